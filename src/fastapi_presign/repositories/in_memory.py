from copy import deepcopy
from datetime import datetime
from typing import Dict, List, Optional

from fastapi_presign.domain.entities import ApiKey, FileObject, Project
from fastapi_presign.domain.errors import DuplicateEntry, MissingReference
from fastapi_presign.repositories.base import (
    AbstractApiKeyRepository,
    AbstractFileObjectRepository,
    AbstractProjectRepository,
)


class InMemoryProjectRepository(AbstractProjectRepository):
    """In-memory implementation of the project repository.

    Notes:
        This implementation is not thread-safe, don't use in production.
        It has no persistence and will lose all data when the application
        stops. Calls never suspend, so they are atomic within one event loop.
    """

    def __init__(self) -> None:
        self._store: Dict[str, Project] = {}

    async def get_by_id(self, id_: str) -> Optional[Project]:
        return self._store.get(id_)

    async def create(self, entity: Project) -> Project:
        if entity.id_ in self._store:
            raise DuplicateEntry(f"Project '{entity.id_}' already exists")

        self._store[entity.id_] = entity
        return entity

    async def upsert(self, entity: Project) -> Project:
        return self._store.setdefault(entity.id_, entity)


class InMemoryApiKeyRepository(AbstractApiKeyRepository):
    """In-memory implementation of the API key repository.

    Args:
        projects: Optional project repository used to enforce the project reference.
    """

    def __init__(self, projects: Optional[InMemoryProjectRepository] = None) -> None:
        self._store: Dict[str, ApiKey] = {}
        self._projects = projects

    async def get_by_id(self, id_: str) -> Optional[ApiKey]:
        entity = self._store.get(id_)
        return deepcopy(entity) if entity else None

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        for entity in self._store.values():
            if entity.key_hash == key_hash:
                return deepcopy(entity)

        return None

    async def create(self, entity: ApiKey) -> ApiKey:
        if any(v.key_hash == entity.key_hash or v.id_ == entity.id_ for v in self._store.values()):
            raise DuplicateEntry("API key already exists")

        if self._projects is not None and await self._projects.get_by_id(entity.project_id) is None:
            raise MissingReference(f"Project '{entity.project_id}' does not exist")

        self._store[entity.id_] = deepcopy(entity)
        return entity

    async def update(self, entity: ApiKey) -> Optional[ApiKey]:
        if entity.id_ not in self._store:
            return None

        self._store[entity.id_] = deepcopy(entity)
        return entity

    async def touch(self, id_: str, used_at: datetime) -> None:
        entity = self._store.get(id_)
        if entity is not None:
            entity.last_used_at = used_at

    async def list(self, limit: int = 100, offset: int = 0) -> List[ApiKey]:
        items = sorted(
            self._store.values(),
            key=lambda x: x.created_at,
            reverse=True,
        )
        return [deepcopy(item) for item in items[offset : offset + limit]]


class InMemoryFileObjectRepository(AbstractFileObjectRepository):
    """In-memory implementation of the object metadata repository."""

    def __init__(self) -> None:
        self._store: Dict[str, FileObject] = {}

    async def get_by_key(self, key: str) -> Optional[FileObject]:
        entity = self._store.get(key)
        return deepcopy(entity) if entity else None

    async def create(self, entity: FileObject) -> FileObject:
        if entity.key in self._store:
            raise DuplicateEntry(f"Object '{entity.key}' already tracked")

        self._store[entity.key] = deepcopy(entity)
        return entity

    async def update(self, entity: FileObject) -> Optional[FileObject]:
        stored = self._store.get(entity.key)
        if stored is None:
            return None

        updated = deepcopy(entity)
        # Owner is bound once.
        if stored.project_id is not None:
            updated.project_id = stored.project_id

        self._store[entity.key] = updated
        return deepcopy(updated)
