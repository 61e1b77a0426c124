"""Application factory wiring settings, SQLAlchemy, the blob store and the routers."""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Tuple

from fastapi import Depends, FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from fastapi_presign.api import create_admin_router, create_storage_router, install_error_handlers
from fastapi_presign.config import Settings, get_settings
from fastapi_presign.domain.codec import KeyCodec
from fastapi_presign.hasher import HmacSha256ApiKeyHasher, Sha256ApiKeyHasher
from fastapi_presign.log import configure_logging
from fastapi_presign.repositories.sql import (
    SqlAlchemyApiKeyRepository,
    SqlAlchemyFileObjectRepository,
    SqlAlchemyProjectRepository,
    SqlAlchemyUsageRecorder,
    enable_sqlite_foreign_keys,
    ensure_tables,
)
from fastapi_presign.services.auth import KeyAuthenticator
from fastapi_presign.services.keys import ApiKeyIssuer
from fastapi_presign.services.objects import ObjectAccessGrantor
from fastapi_presign.services.projects import ProjectResolver
from fastapi_presign.storage.base import AbstractBlobStore


def create_codec(settings: Settings) -> KeyCodec:
    """Use HMAC-SHA256 when a pepper is configured, plain SHA-256 otherwise.

    Notes:
        Switching hashers invalidates every issued key.
    """
    if settings.api_key_pepper is not None:
        return KeyCodec(hasher=HmacSha256ApiKeyHasher(pepper=settings.api_key_pepper.get_secret_value()))
    return KeyCodec(hasher=Sha256ApiKeyHasher())


def create_blob_store(settings: Settings) -> AbstractBlobStore:
    from fastapi_presign.storage.s3 import S3BlobStore

    return S3BlobStore(
        bucket=settings.s3_bucket,
        endpoint_url=settings.s3_endpoint,
        region_name=settings.s3_region,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key.get_secret_value() if settings.s3_secret_key else None,
        force_path_style=settings.s3_force_path_style,
    )


def origin_headers_of(settings: Settings) -> Tuple[str, ...]:
    """Client address headers in trust order, skipping blank ones."""
    headers = (settings.trusted_proxy_header, settings.real_ip_header, settings.forwarded_for_header)
    return tuple(h.strip().lower() for h in headers if h and h.strip())


def create_app(
    settings: Optional[Settings] = None,
    blob_store: Optional[AbstractBlobStore] = None,
    async_engine: Optional[AsyncEngine] = None,
    rrd: float = 1 / 3,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings. Loaded from the environment when omitted.
        blob_store: Blob store override. An S3 store is built from the
            settings when omitted.
        async_engine: SQLAlchemy engine override.
        rrd: Random response delay applied to failed authentications.

    Raises:
        ServerMisconfigured: If the storage settings are incomplete.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    storage_config = settings.to_storage_config()
    async_engine = async_engine or create_async_engine(settings.database_url)
    enable_sqlite_foreign_keys(async_engine)
    async_session_maker = async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)
    blob_store = blob_store or create_blob_store(settings)
    codec = create_codec(settings)
    usage_recorder = SqlAlchemyUsageRecorder(async_session_maker)
    origin_headers = origin_headers_of(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        async with async_session_maker() as session:
            await ensure_tables(session)
        yield
        await KeyAuthenticator.drain()
        await async_engine.dispose()

    async def get_db() -> AsyncIterator[AsyncSession]:
        """Provide a transactional scope around a request."""
        async with async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def get_authenticator(session: AsyncSession = Depends(get_db)) -> KeyAuthenticator:
        return KeyAuthenticator(
            repo=SqlAlchemyApiKeyRepository(session),
            codec=codec,
            usage_recorder=usage_recorder,
            origin_headers=origin_headers,
            rrd=rrd,
        )

    async def get_grantor(session: AsyncSession = Depends(get_db)) -> ObjectAccessGrantor:
        return ObjectAccessGrantor(
            objects=SqlAlchemyFileObjectRepository(session),
            blobs=blob_store,
            config=storage_config,
        )

    async def get_issuer(session: AsyncSession = Depends(get_db)) -> ApiKeyIssuer:
        return ApiKeyIssuer(
            repo=SqlAlchemyApiKeyRepository(session),
            projects=ProjectResolver(SqlAlchemyProjectRepository(session)),
            codec=codec,
        )

    app = FastAPI(title="Presigned object access", lifespan=lifespan)
    app.state.settings = settings
    app.state.async_session_maker = async_session_maker
    install_error_handlers(app)

    app.include_router(create_storage_router(get_authenticator, get_grantor))
    app.include_router(create_admin_router(get_authenticator, get_issuer))

    return app
