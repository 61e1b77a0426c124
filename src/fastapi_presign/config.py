"""Configuration settings using Pydantic Settings."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from pydantic import SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from fastapi_presign.domain.errors import ServerMisconfigured


@dataclass(frozen=True)
class StorageConfig:
    """Explicit configuration injected into the object grantor.

    Attributes:
        bucket: Bucket every object lives in.
        public_base_url: Externally reachable base for reads (CDN).
        allow_anonymous_upload: Let requests without a key mint upload grants.
        strict_downloads: Refuse downloads for objects without a metadata
            record. When False, a bare existence probe is enough and no
            ownership check is made.

    Raises:
        ServerMisconfigured: If the bucket or the public base URL is blank.
    """

    bucket: str
    public_base_url: str
    allow_anonymous_upload: bool = False
    strict_downloads: bool = True

    def __post_init__(self) -> None:
        if not self.bucket or not self.bucket.strip():
            raise ServerMisconfigured("Server misconfigured: bucket missing")

        if not self.public_base_url or not self.public_base_url.strip():
            raise ServerMisconfigured("Server misconfigured: public base URL missing")

        object.__setattr__(self, "public_base_url", self.public_base_url.rstrip("/"))

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{key}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Database
    database_url: str = "sqlite+aiosqlite:///./presign.sqlite3"

    # S3 storage
    s3_endpoint: Optional[str] = None
    s3_region: str = "us-east-1"
    s3_bucket: str
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[SecretStr] = None
    s3_force_path_style: bool = False

    # Reads
    cdn_public_base: str

    # Policy
    allow_anonymous_upload: bool = False
    strict_downloads: bool = True
    api_key_pepper: Optional[SecretStr] = None

    # Client origin resolution, most trusted first
    trusted_proxy_header: str = "cf-connecting-ip"
    real_ip_header: str = "x-real-ip"
    forwarded_for_header: str = "x-forwarded-for"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("s3_bucket", "cdn_public_base")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    def to_storage_config(self) -> StorageConfig:
        return StorageConfig(
            bucket=self.s3_bucket,
            public_base_url=self.cdn_public_base,
            allow_anonymous_upload=self.allow_anonymous_upload,
            strict_downloads=self.strict_downloads,
        )


def load_settings(**overrides) -> Settings:
    """Build settings, turning validation failures into :class:`ServerMisconfigured`."""
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise ServerMisconfigured(f"Server misconfigured: {fields}") from exc


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()
