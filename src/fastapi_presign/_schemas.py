"""Pydantic schemas for the HTTP layer.

Field names are snake_case in Python and camelCase on the wire.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fastapi_presign.domain.entities import ApiKey, FileObject
from fastapi_presign.services.objects import DownloadGrant, UploadGrant


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateUploadIn(_CamelModel):
    """Payload to request an upload grant.

    Attributes:
        mime: Content type the client will PUT.
        ext: File extension, sanitized server side.
        folder: Target folder, sanitized server side.
        is_public: Cache publicly and allow anonymous reads via the CDN.
        checksum: Optional SHA-256 hex digest of the content.
        expires_in: Requested URL lifetime in seconds, clamped to [10, 600].
    """

    mime: Optional[str] = Field(None, max_length=255)
    ext: Optional[str] = Field(None, max_length=64)
    folder: Optional[str] = Field(None, max_length=512)
    is_public: bool = True
    checksum: Optional[str] = Field(None, max_length=128)
    expires_in: Optional[int] = None


class UploadGrantOut(_CamelModel):
    upload_url: str
    key: str
    expires_in: int
    public_url: str
    tracked: bool = True
    warning: Optional[str] = None

    @classmethod
    def from_grant(cls, grant: UploadGrant, warning: Optional[str] = None) -> "UploadGrantOut":
        return cls(
            upload_url=grant.upload_url,
            key=grant.key,
            expires_in=grant.expires_in,
            public_url=grant.public_url,
            tracked=grant.tracked,
            warning=warning,
        )


class ConfirmIn(_CamelModel):
    key: str = Field(..., min_length=1, max_length=1024)


class ConfirmOut(_CamelModel):
    ok: Literal[True] = True
    key: str
    size: Optional[int] = None
    etag: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: FileObject) -> "ConfirmOut":
        return cls(key=entity.key, size=entity.size, etag=entity.etag)


class CreateDownloadIn(_CamelModel):
    key: str = Field(..., min_length=1, max_length=1024)
    expires_in: Optional[int] = None
    as_attachment_name: Optional[str] = Field(None, max_length=255)


class DownloadGrantOut(_CamelModel):
    url: str
    expires_in: int
    key: str

    @classmethod
    def from_grant(cls, grant: DownloadGrant) -> "DownloadGrantOut":
        return cls(url=grant.url, expires_in=grant.expires_in, key=grant.key)


class ApiKeyCreateIn(_CamelModel):
    """Payload to issue a new API key.

    Attributes:
        project_id: Owning project; created if it does not exist. A new
            project is created when omitted.
        project_name: Name used when the project has to be created.
        scopes: Scopes granted to the key.
        prefix: Key family.
        allowed_origins: IPv4 literals or CIDR blocks; empty means unrestricted.
    """

    project_id: Optional[str] = Field(None, min_length=1, max_length=64)
    project_name: Optional[str] = Field(None, max_length=256)
    scopes: List[str] = Field(default_factory=lambda: ["upload", "download"])
    prefix: Literal["sk_live", "sk_test"] = "sk_live"
    allowed_origins: List[str] = Field(default_factory=list)
    is_active: bool = True


class ApiKeyOut(_CamelModel):
    """Public representation of an API key entity. Never carries the hash."""

    id: str
    public_id: str
    prefix: str
    project_id: str
    scopes: List[str]
    allowed_origins: List[str]
    is_active: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, entity: ApiKey) -> "ApiKeyOut":
        return cls(
            id=entity.id_,
            public_id=entity.public_id,
            prefix=entity.prefix,
            project_id=entity.project_id,
            scopes=list(entity.scope_set),
            allowed_origins=list(entity.allowed_origins),
            is_active=entity.is_active,
            created_at=entity.created_at,
            last_used_at=entity.last_used_at,
        )


class ApiKeyCreatedOut(_CamelModel):
    """Response returned after issuing a key.

    Attributes:
        api_key: The plaintext API key (only returned once!).
        entity: Public representation of the stored entity.
    """

    api_key: str
    entity: ApiKeyOut


class ErrorOut(BaseModel):
    error: str
    detail: str
