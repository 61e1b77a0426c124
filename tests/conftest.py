from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Iterator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fastapi_presign.config import StorageConfig
from fastapi_presign.domain.codec import KeyCodec
from fastapi_presign.domain.entities import ApiKey, FileObject
from fastapi_presign.repositories.base import (
    AbstractApiKeyRepository,
    AbstractFileObjectRepository,
    AbstractProjectRepository,
)
from fastapi_presign.repositories.in_memory import (
    InMemoryApiKeyRepository,
    InMemoryFileObjectRepository,
    InMemoryProjectRepository,
)
from fastapi_presign.repositories.sql import (
    Base,
    SqlAlchemyApiKeyRepository,
    enable_sqlite_foreign_keys,
    SqlAlchemyFileObjectRepository,
    SqlAlchemyProjectRepository,
)
from fastapi_presign.services.objects import ObjectAccessGrantor
from fastapi_presign.storage.in_memory import InMemoryBlobStore

BUCKET = "test-bucket"
PUBLIC_BASE = "https://cdn.example.com"


@pytest_asyncio.fixture(scope="function")
async def async_engine() -> AsyncIterator[AsyncEngine]:
    """Create an in-memory SQLite async engine."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def async_session(async_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Provide an AsyncSession bound to the in-memory engine."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        yield session


@dataclass
class Repositories:
    """Repositories of one backend sharing the same store."""

    projects: AbstractProjectRepository
    api_keys: AbstractApiKeyRepository
    objects: AbstractFileObjectRepository


@pytest.fixture(params=["memory", "sqlalchemy"], scope="function")
def repositories(request, async_session: AsyncSession) -> Iterator[Repositories]:
    """Fixture to provide the repositories of each backend."""
    if request.param == "memory":
        projects = InMemoryProjectRepository()
        yield Repositories(
            projects=projects,
            api_keys=InMemoryApiKeyRepository(projects=projects),
            objects=InMemoryFileObjectRepository(),
        )
    elif request.param == "sqlalchemy":
        yield Repositories(
            projects=SqlAlchemyProjectRepository(async_session=async_session),
            api_keys=SqlAlchemyApiKeyRepository(async_session=async_session),
            objects=SqlAlchemyFileObjectRepository(async_session=async_session),
        )
    else:
        raise ValueError(f"Unknown repository type: {request.param}")


@pytest.fixture
def codec() -> KeyCodec:
    return KeyCodec()


@pytest.fixture
def storage_config() -> StorageConfig:
    return StorageConfig(bucket=BUCKET, public_base_url=PUBLIC_BASE)


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore(bucket=BUCKET)


@pytest.fixture
def objects() -> InMemoryFileObjectRepository:
    return InMemoryFileObjectRepository()


@pytest.fixture
def grantor(
    objects: InMemoryFileObjectRepository,
    blob_store: InMemoryBlobStore,
    storage_config: StorageConfig,
) -> ObjectAccessGrantor:
    """Grantor over in-memory stores with deterministic object keys."""
    counter = iter(range(1, 10_000))
    return ObjectAccessGrantor(
        objects=objects,
        blobs=blob_store,
        config=storage_config,
        key_factory=lambda: f"obj-{next(counter)}",
    )


def make_api_key(codec: KeyCodec, project_id: str = "p1", **kwargs) -> tuple:
    """Create a fresh ApiKey entity together with its plaintext key."""
    generated = codec.generate(kwargs.pop("prefix", "sk_live"))
    entity = ApiKey(
        key_hash=generated.key_hash,
        public_id=generated.public_id,
        prefix=generated.prefix,
        project_id=project_id,
        scopes=kwargs.pop("scopes", ["upload", "download"]),
        **kwargs,
    )
    return entity, generated.key


def make_file_object(key: str = "uploads/2024-01-01/a.bin", **kwargs) -> FileObject:
    return FileObject(key=key, bucket=kwargs.pop("bucket", BUCKET), **kwargs)
