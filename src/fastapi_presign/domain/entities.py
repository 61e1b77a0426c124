from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from fastapi_presign.domain.errors import INVALID_CREDENTIAL_MESSAGE, InsufficientScope, InvalidCredential
from fastapi_presign.domain.scopes import ScopeSet, normalize_string_list
from fastapi_presign.utils import datetime_factory, uuid_factory


def _normalize_datetime(value: Optional[datetime]) -> Optional[datetime]:
    """Ensure datetimes are timezone-aware (UTC)."""
    if value is None:
        return None

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)

    return value


@dataclass
class Project:
    """Ownership boundary for keys and objects."""

    id_: str = field(default_factory=uuid_factory)
    name: str = "Untitled Project"
    created_at: datetime = field(default_factory=datetime_factory)

    def __post_init__(self) -> None:
        self.created_at = _normalize_datetime(self.created_at) or datetime_factory()


@dataclass
class ApiKey:
    """Domain entity representing an issued API key.

    Notes:
        The plaintext key is never stored. ``key_hash`` is a deterministic
        digest of the full key and doubles as the lookup key. ``public_id``
        is the only part of the key that may appear in logs.

        Revocation is done through ``is_active``; records are not deleted.
    """

    key_hash: str
    public_id: str
    project_id: str
    prefix: str = "sk_live"
    id_: str = field(default_factory=uuid_factory)
    scopes: List[str] = field(default_factory=list)
    allowed_origins: List[str] = field(default_factory=list)
    is_active: bool = True
    created_at: datetime = field(default_factory=datetime_factory)
    last_used_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _normalize_datetime(self.created_at) or datetime_factory()
        self.last_used_at = _normalize_datetime(self.last_used_at)
        self.allowed_origins = normalize_string_list(self.allowed_origins)

    @property
    def scope_set(self) -> ScopeSet:
        return ScopeSet.parse(self.scopes)

    @property
    def is_origin_restricted(self) -> bool:
        return bool(self.allowed_origins)

    def disable(self) -> None:
        self.is_active = False

    def enable(self) -> None:
        self.is_active = True

    def touch(self) -> None:
        self.last_used_at = datetime_factory()

    def ensure_can_authenticate(self) -> None:
        """Raise if this key cannot be used.

        Raises:
            InvalidCredential: If the key is disabled. Same error as an unknown key.
        """
        if not self.is_active:
            raise InvalidCredential(INVALID_CREDENTIAL_MESSAGE)

    def ensure_valid_scopes(self, required_scopes: List[str]) -> None:
        if required_scopes:
            missing_scopes = self.scope_set.missing(required_scopes)
            if missing_scopes:
                raise InsufficientScope(f"API key is missing required scopes: {', '.join(missing_scopes)}")


@dataclass
class FileObject:
    """What the service believes about one blob store object.

    Notes:
        A record is written as soon as an upload grant is minted, before the
        object exists. ``size`` and ``etag`` are only filled by a confirm
        that re-reads the object from the blob store. ``project_id`` is bound
        at most once.
    """

    key: str
    bucket: str
    mime_type: str = "application/octet-stream"
    is_public: bool = True
    checksum: Optional[str] = None
    size: Optional[int] = None
    etag: Optional[str] = None
    project_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime_factory)
    confirmed_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        self.created_at = _normalize_datetime(self.created_at) or datetime_factory()
        self.confirmed_at = _normalize_datetime(self.confirmed_at)

    @property
    def is_confirmed(self) -> bool:
        return self.confirmed_at is not None

    def is_owned_by(self, project_id: Optional[str]) -> bool:
        return self.project_id is not None and self.project_id == project_id

    def confirm(self, size: Optional[int], etag: Optional[str], project_id: Optional[str]) -> None:
        """Record the blob store state and bind the owner if still unbound."""
        self.size = size
        self.etag = etag
        self.confirmed_at = datetime_factory()
        if self.project_id is None:
            self.project_id = project_id
