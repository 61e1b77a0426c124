try:
    import sqlalchemy  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError(
        "SQLAlchemy backend requires 'sqlalchemy'. Install it with: pip install 'sqlalchemy[asyncio]'"
    ) from e


from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, String, event, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.orm.exc import FlushError

from fastapi_presign.domain.entities import ApiKey, FileObject, Project
from fastapi_presign.domain.errors import DuplicateEntry, MissingReference, PersistenceError
from fastapi_presign.repositories.base import (
    AbstractApiKeyRepository,
    AbstractFileObjectRepository,
    AbstractProjectRepository,
)
from fastapi_presign.utils import datetime_factory


class Base(DeclarativeBase): ...


class ProjectModel(Base):
    __tablename__ = "projects"

    id_: Mapped[str] = mapped_column(
        String(64),
        name="id",
        primary_key=True,
    )
    name: Mapped[str] = mapped_column(
        String(256),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime_factory,
    )


class ApiKeyModel(Base):
    """SQLAlchemy ORM model for API keys."""

    __tablename__ = "api_keys"

    id_: Mapped[str] = mapped_column(
        String(36),
        name="id",
        primary_key=True,
    )
    key_hash: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        unique=True,
        index=True,
    )
    public_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        index=True,
    )
    prefix: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
    )
    project_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("projects.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    scopes: Mapped[Any] = mapped_column(JSON, default=list)
    allowed_origins: Mapped[Any] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime_factory,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


class FileObjectModel(Base):
    """SQLAlchemy ORM model for object metadata records."""

    __tablename__ = "file_objects"

    key: Mapped[str] = mapped_column(
        String(1024),
        primary_key=True,
    )
    bucket: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    mime_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    is_public: Mapped[bool] = mapped_column(
        Boolean(),
        nullable=False,
        default=True,
    )
    checksum: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
    )
    size: Mapped[Optional[int]] = mapped_column(
        BigInteger(),
        nullable=True,
    )
    etag: Mapped[Optional[str]] = mapped_column(
        String(128),
        nullable=True,
    )
    project_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime_factory,
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )


async def ensure_tables(async_session: AsyncSession) -> None:
    """Create the tables if they do not exist."""
    async with async_session.bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def enable_sqlite_foreign_keys(async_engine: AsyncEngine) -> None:
    """Make SQLite enforce project references like other backends do. No-op elsewhere."""
    if async_engine.dialect.name != "sqlite":
        return

    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _translate_integrity_error(exc: IntegrityError) -> PersistenceError:
    """Tell a uniqueness violation apart from a dangling reference."""
    message = str(exc.orig).lower()
    if "foreign key" in message:
        return MissingReference(str(exc.orig))
    return DuplicateEntry(str(exc.orig))


class _SqlAlchemyRepository:
    def __init__(self, async_session: AsyncSession) -> None:
        self._async_session = async_session

    async def _execute(self, stmt: Any) -> Any:
        """Execute a statement, rolling back and translating driver errors."""
        try:
            return await self._async_session.execute(stmt)
        except SQLAlchemyError as exc:
            await self._async_session.rollback()
            raise PersistenceError(str(exc)) from exc

    async def _flush(self) -> None:
        """Flush pending changes, rolling back and translating on failure.

        A failed write leaves nothing behind in the session.
        """
        try:
            await self._async_session.flush()
        except IntegrityError as exc:
            await self._async_session.rollback()
            raise _translate_integrity_error(exc) from exc
        except FlushError as exc:
            # Same primary key as an instance already in this session.
            await self._async_session.rollback()
            raise DuplicateEntry(str(exc)) from exc
        except SQLAlchemyError as exc:
            await self._async_session.rollback()
            raise PersistenceError(str(exc)) from exc


class SqlAlchemyProjectRepository(_SqlAlchemyRepository, AbstractProjectRepository):
    """SQLAlchemy implementation of the project repository."""

    @staticmethod
    def _to_domain(model: Optional[ProjectModel]) -> Optional[Project]:
        if model is None:
            return None

        return Project(id_=model.id_, name=model.name, created_at=model.created_at)

    async def get_by_id(self, id_: str) -> Optional[Project]:
        stmt = select(ProjectModel).where(ProjectModel.id_ == id_)
        result = await self._execute(stmt)
        return self._to_domain(result.scalar_one_or_none())

    async def create(self, entity: Project) -> Project:
        model = ProjectModel(id_=entity.id_, name=entity.name, created_at=entity.created_at)
        self._async_session.add(model)
        await self._flush()
        return entity

    async def upsert(self, entity: Project) -> Project:
        values = {"id": entity.id_, "name": entity.name, "created_at": entity.created_at}
        dialect = self._async_session.get_bind().dialect.name

        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as pg_insert

            await self._execute(
                pg_insert(ProjectModel.__table__).values(**values).on_conflict_do_nothing(index_elements=["id"])
            )
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as sqlite_insert

            await self._execute(
                sqlite_insert(ProjectModel.__table__).values(**values).on_conflict_do_nothing(index_elements=["id"])
            )
        else:
            await self._insert_ignoring_duplicate(entity)

        stored = await self.get_by_id(entity.id_)
        if stored is None:
            raise PersistenceError(f"Project '{entity.id_}' vanished after upsert")

        return stored

    async def _insert_ignoring_duplicate(self, entity: Project) -> None:
        try:
            async with self._async_session.begin_nested():
                self._async_session.add(ProjectModel(id_=entity.id_, name=entity.name, created_at=entity.created_at))
        except IntegrityError:
            # Another writer created it first.
            pass
        except SQLAlchemyError as exc:
            await self._async_session.rollback()
            raise PersistenceError(str(exc)) from exc


class SqlAlchemyApiKeyRepository(_SqlAlchemyRepository, AbstractApiKeyRepository):
    """SQLAlchemy implementation of the API key repository."""

    @staticmethod
    def _to_model(entity: ApiKey, target: Optional[ApiKeyModel] = None) -> ApiKeyModel:
        """Convert a domain entity to a SQLAlchemy model instance."""
        if target is None:
            return ApiKeyModel(
                id_=entity.id_,
                key_hash=entity.key_hash,
                public_id=entity.public_id,
                prefix=entity.prefix,
                project_id=entity.project_id,
                scopes=list(entity.scopes),
                allowed_origins=list(entity.allowed_origins),
                is_active=entity.is_active,
                created_at=entity.created_at,
                last_used_at=entity.last_used_at,
            )

        # Only mutable fields; hash, public id and owner never change.
        target.scopes = list(entity.scopes)
        target.allowed_origins = list(entity.allowed_origins)
        target.is_active = entity.is_active
        target.last_used_at = entity.last_used_at
        return target

    @staticmethod
    def _to_domain(model: Optional[ApiKeyModel]) -> Optional[ApiKey]:
        if model is None:
            return None

        return ApiKey(
            id_=model.id_,
            key_hash=model.key_hash,
            public_id=model.public_id,
            prefix=model.prefix,
            project_id=model.project_id,
            scopes=model.scopes if model.scopes is not None else [],
            allowed_origins=model.allowed_origins,
            is_active=model.is_active,
            created_at=model.created_at,
            last_used_at=model.last_used_at,
        )

    async def _get_model(self, id_: str) -> Optional[ApiKeyModel]:
        stmt = select(ApiKeyModel).where(ApiKeyModel.id_ == id_)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, id_: str) -> Optional[ApiKey]:
        return self._to_domain(await self._get_model(id_))

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        stmt = select(ApiKeyModel).where(ApiKeyModel.key_hash == key_hash)
        result = await self._execute(stmt)
        return self._to_domain(result.scalar_one_or_none())

    async def create(self, entity: ApiKey) -> ApiKey:
        model = self._to_model(entity)
        self._async_session.add(model)
        await self._flush()
        result = self._to_domain(model)
        assert result is not None  # nosec B101 - Model was just created, domain entity must exist
        return result

    async def update(self, entity: ApiKey) -> Optional[ApiKey]:
        model = await self._get_model(entity.id_)

        if model is None:
            return None

        model = self._to_model(entity, target=model)
        self._async_session.add(model)
        await self._flush()
        return self._to_domain(model)

    async def touch(self, id_: str, used_at: datetime) -> None:
        stmt = update(ApiKeyModel).where(ApiKeyModel.id_ == id_).values(last_used_at=used_at)
        await self._execute(stmt)

    async def list(self, limit: int = 100, offset: int = 0) -> List[ApiKey]:
        stmt = select(ApiKeyModel).order_by(ApiKeyModel.created_at.desc())
        stmt = stmt.limit(limit).offset(offset)
        result = await self._execute(stmt)
        models = result.scalars().all()
        return [self._to_domain(m) for m in models]


class SqlAlchemyFileObjectRepository(_SqlAlchemyRepository, AbstractFileObjectRepository):
    """SQLAlchemy implementation of the object metadata repository."""

    @staticmethod
    def _to_domain(model: Optional[FileObjectModel]) -> Optional[FileObject]:
        if model is None:
            return None

        return FileObject(
            key=model.key,
            bucket=model.bucket,
            mime_type=model.mime_type,
            is_public=model.is_public,
            checksum=model.checksum,
            size=model.size,
            etag=model.etag,
            project_id=model.project_id,
            created_at=model.created_at,
            confirmed_at=model.confirmed_at,
        )

    async def _get_model(self, key: str) -> Optional[FileObjectModel]:
        stmt = select(FileObjectModel).where(FileObjectModel.key == key)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_key(self, key: str) -> Optional[FileObject]:
        return self._to_domain(await self._get_model(key))

    async def create(self, entity: FileObject) -> FileObject:
        model = FileObjectModel(
            key=entity.key,
            bucket=entity.bucket,
            mime_type=entity.mime_type,
            is_public=entity.is_public,
            checksum=entity.checksum,
            size=entity.size,
            etag=entity.etag,
            project_id=entity.project_id,
            created_at=entity.created_at,
            confirmed_at=entity.confirmed_at,
        )
        self._async_session.add(model)
        await self._flush()
        return entity

    async def update(self, entity: FileObject) -> Optional[FileObject]:
        model = await self._get_model(entity.key)

        if model is None:
            return None

        model.size = entity.size
        model.etag = entity.etag
        model.confirmed_at = entity.confirmed_at
        # Owner is bound once.
        if model.project_id is None:
            model.project_id = entity.project_id

        self._async_session.add(model)
        await self._flush()
        return self._to_domain(model)


class SqlAlchemyUsageRecorder:
    """Record key usage in a short-lived session of its own.

    The request session is never shared with the detached usage update.

    Args:
        async_session_maker: Factory for fresh sessions.
    """

    def __init__(self, async_session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._async_session_maker = async_session_maker

    async def __call__(self, id_: str, used_at: datetime) -> None:
        async with self._async_session_maker() as session:
            async with session.begin():
                await SqlAlchemyApiKeyRepository(session).touch(id_, used_at)
