from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from fastapi_presign.domain.entities import ApiKey, FileObject, Project


class AbstractApiKeyRepository(ABC):
    """Repository contract for API keys.

    Notes:
        ``create`` raises :class:`DuplicateEntry` when the hash is already
        stored and :class:`MissingReference` when the project does not exist.
    """

    @abstractmethod
    async def get_by_id(self, id_: str) -> Optional[ApiKey]:
        """Get the entity by its ID, or None if not found."""
        ...

    @abstractmethod
    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        """Get the entity by the digest of the full key, or None if not found."""
        ...

    @abstractmethod
    async def create(self, entity: ApiKey) -> ApiKey:
        ...

    @abstractmethod
    async def update(self, entity: ApiKey) -> Optional[ApiKey]:
        """Update an existing entity and return it, or None if it doesn't exist."""
        ...

    @abstractmethod
    async def touch(self, id_: str, used_at: datetime) -> None:
        """Set ``last_used_at`` without loading the entity."""
        ...

    @abstractmethod
    async def list(self, limit: int = 100, offset: int = 0) -> List[ApiKey]:
        """List entities, newest first."""
        ...


class AbstractProjectRepository(ABC):
    """Repository contract for projects."""

    @abstractmethod
    async def get_by_id(self, id_: str) -> Optional[Project]:
        ...

    @abstractmethod
    async def create(self, entity: Project) -> Project:
        ...

    @abstractmethod
    async def upsert(self, entity: Project) -> Project:
        """Insert the project unless one with the same ID exists, then return the stored row.

        Notes:
            Must be safe under concurrent calls for the same ID: the existing
            row is returned unchanged and no duplicate is created.
        """
        ...


class AbstractFileObjectRepository(ABC):
    """Repository contract for object metadata records, keyed by blob store path."""

    @abstractmethod
    async def get_by_key(self, key: str) -> Optional[FileObject]:
        ...

    @abstractmethod
    async def create(self, entity: FileObject) -> FileObject:
        ...

    @abstractmethod
    async def update(self, entity: FileObject) -> Optional[FileObject]:
        ...
