try:
    import fastapi  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError("The HTTP layer requires 'fastapi'. Install it with: pip install fastapi-presign") from e

from typing import Annotated, Awaitable, Callable, List, Optional, Sequence

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Security, status
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from fastapi_presign._schemas import (
    ApiKeyCreatedOut,
    ApiKeyCreateIn,
    ApiKeyOut,
    ConfirmIn,
    ConfirmOut,
    CreateDownloadIn,
    CreateUploadIn,
    DownloadGrantOut,
    ErrorOut,
    UploadGrantOut,
)
from fastapi_presign._types import SecurityDependency
from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.domain.errors import (
    BlobStoreError,
    MissingCredential,
    PartialSuccess,
    PersistenceError,
    PresignError,
)
from fastapi_presign.domain.scopes import Scope
from fastapi_presign.services.auth import KeyAuthenticator, resolve_client_origin
from fastapi_presign.services.keys import ApiKeyIssuer
from fastapi_presign.services.objects import ObjectAccessGrantor

logger = structlog.get_logger()

SCHEME_NAME = "API Key"

_ERROR_RESPONSES = {
    400: {"model": ErrorOut},
    401: {"model": ErrorOut},
    403: {"model": ErrorOut},
    404: {"model": ErrorOut},
    503: {"model": ErrorOut},
}


def error_response(exc: PresignError) -> JSONResponse:
    """Render a domain error as ``{"error": code, "detail": message}``."""
    headers = {"WWW-Authenticate": SCHEME_NAME} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": str(exc)},
        headers=headers,
    )


async def _presign_error_handler(request: Request, exc: PresignError) -> JSONResponse:
    return error_response(exc)


async def _collaborator_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Services translate these; reaching here means a code path missed it.
    logger.error("request.unmapped_error", path=request.url.path, error=repr(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "storage_unavailable", "detail": "Storage backend unavailable"},
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register the handlers mapping domain errors to JSON error bodies."""
    app.add_exception_handler(PresignError, _presign_error_handler)
    app.add_exception_handler(PersistenceError, _collaborator_error_handler)
    app.add_exception_handler(BlobStoreError, _collaborator_error_handler)


def create_depends_api_key(
    depends_authenticator: Callable[..., Awaitable[KeyAuthenticator]],
    required_scopes: Optional[Sequence[str]] = None,
    optional: bool = False,
) -> SecurityDependency:
    """Create a FastAPI security dependency that verifies API keys.

    The key is read from ``Authorization: Bearer <key>`` first, then from
    ``X-API-Key``. The client address for origin-restricted keys is resolved
    from the authenticator's proxy headers.

    Args:
        depends_authenticator: Dependency callable that provides a `KeyAuthenticator`.
        required_scopes: Scopes the key must all carry.
        optional: Yield ``None`` instead of failing when no key is sent.

    Returns:
        A dependency callable that yields the verified :class:`ApiKey`, or
        raises a :class:`PresignError` rendered by the installed handlers.
    """
    bearer = HTTPBearer(
        auto_error=False,
        scheme_name=SCHEME_NAME,
        description="API key required in the `Authorization` header as a Bearer token.",
    )
    header = APIKeyHeader(
        name="X-API-Key",
        auto_error=False,
        scheme_name="X-API-Key",
        description="API key in the `X-API-Key` header.",
    )
    scopes = list(required_scopes or [])

    async def _valid_api_key(
        request: Request,
        bearer_credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer),
        header_key: Optional[str] = Security(header),
        authenticator: KeyAuthenticator = Depends(depends_authenticator),
    ) -> Optional[ApiKey]:
        credential = bearer_credentials.credentials if bearer_credentials else header_key

        # Faster check for missing key (avoid lookup and response delay)
        if not credential or not credential.strip():
            if optional:
                return None
            raise MissingCredential("Missing API key")

        return await authenticator.authenticate(
            credential,
            required_scopes=scopes,
            client_origin=resolve_client_origin(request.headers, authenticator.origin_headers),
        )

    return _valid_api_key


def create_storage_router(
    depends_authenticator: Callable[..., Awaitable[KeyAuthenticator]],
    depends_grantor: Callable[..., Awaitable[ObjectAccessGrantor]],
    router: Optional[APIRouter] = None,
) -> APIRouter:
    """Create the router issuing upload and download grants.

    Args:
        depends_authenticator: Dependency callable that provides a `KeyAuthenticator`.
        depends_grantor: Dependency callable that provides an `ObjectAccessGrantor`.
        router: Optional `APIRouter` instance. If not provided, a new one is created.
    """
    router = router or APIRouter(prefix="/storage", tags=["Storage"])

    upload_key = create_depends_api_key(depends_authenticator, [Scope.UPLOAD.value], optional=True)
    confirm_key = create_depends_api_key(depends_authenticator, [Scope.UPLOAD.value])
    download_key = create_depends_api_key(depends_authenticator, [Scope.DOWNLOAD.value])

    @router.post(
        "/create-upload",
        response_model=UploadGrantOut,
        response_model_by_alias=True,
        responses={**_ERROR_RESPONSES, 207: {"model": UploadGrantOut}},
        summary="Issue a presigned upload URL",
    )
    async def create_upload(
        payload: CreateUploadIn,
        api_key: Optional[ApiKey] = Depends(upload_key),
        grantor: ObjectAccessGrantor = Depends(depends_grantor),
    ):
        """Issue a presigned PUT URL and record the object as pending.

        Returns 207 with the grant and a ``warning`` when the URL was signed
        but the metadata record could not be written.
        """
        try:
            grant = await grantor.issue_upload_grant(
                project_id=api_key.project_id if api_key else None,
                mime=payload.mime,
                extension=payload.ext,
                folder=payload.folder,
                is_public=payload.is_public,
                checksum=payload.checksum,
                ttl=payload.expires_in,
            )
        except PartialSuccess as exc:
            out = UploadGrantOut.from_grant(exc.grant, warning=str(exc))
            return JSONResponse(status_code=status.HTTP_207_MULTI_STATUS, content=out.model_dump(by_alias=True))

        return UploadGrantOut.from_grant(grant)

    @router.post(
        "/confirm",
        response_model=ConfirmOut,
        response_model_by_alias=True,
        responses=_ERROR_RESPONSES,
        summary="Confirm a completed upload",
    )
    async def confirm_upload(
        payload: ConfirmIn,
        api_key: ApiKey = Depends(confirm_key),
        grantor: ObjectAccessGrantor = Depends(depends_grantor),
    ) -> ConfirmOut:
        entity = await grantor.confirm_upload(api_key.project_id, payload.key)
        return ConfirmOut.from_entity(entity)

    @router.post(
        "/create-download",
        response_model=DownloadGrantOut,
        response_model_by_alias=True,
        responses=_ERROR_RESPONSES,
        summary="Issue a presigned download URL",
    )
    async def create_download(
        payload: CreateDownloadIn,
        api_key: ApiKey = Depends(download_key),
        grantor: ObjectAccessGrantor = Depends(depends_grantor),
    ) -> DownloadGrantOut:
        """Issue a presigned GET URL for an object the caller may read.

        Private objects are only granted to their owning project.
        """
        grant = await grantor.issue_download_grant(
            api_key.project_id,
            payload.key,
            ttl=payload.expires_in,
            attachment_name=payload.as_attachment_name,
        )
        return DownloadGrantOut.from_grant(grant)

    return router


def create_admin_router(
    depends_authenticator: Callable[..., Awaitable[KeyAuthenticator]],
    depends_issuer: Callable[..., Awaitable[ApiKeyIssuer]],
    router: Optional[APIRouter] = None,
) -> APIRouter:
    """Create the router managing API keys. Every route requires the ``admin`` scope.

    Args:
        depends_authenticator: Dependency callable that provides a `KeyAuthenticator`.
        depends_issuer: Dependency callable that provides an `ApiKeyIssuer`.
        router: Optional `APIRouter` instance. If not provided, a new one is created.
    """
    router = router or APIRouter(prefix="/admin/keys", tags=["API Keys"])
    admin = [Depends(create_depends_api_key(depends_authenticator, [Scope.ADMIN.value]))]

    @router.post(
        "",
        dependencies=admin,
        response_model=ApiKeyCreatedOut,
        response_model_by_alias=True,
        status_code=status.HTTP_201_CREATED,
        responses={**_ERROR_RESPONSES, 409: {"model": ErrorOut}},
        summary="Create a new API key",
    )
    async def create_api_key(
        payload: ApiKeyCreateIn,
        issuer: ApiKeyIssuer = Depends(depends_issuer),
    ) -> ApiKeyCreatedOut:
        """Create an API key and return the plaintext secret once.

        The owning project is created when it does not exist yet.
        """
        entity, api_key = await issuer.issue(
            project_id=payload.project_id,
            project_name=payload.project_name,
            scopes=payload.scopes,
            prefix=payload.prefix,
            allowed_origins=payload.allowed_origins,
            is_active=payload.is_active,
        )
        return ApiKeyCreatedOut(api_key=api_key, entity=ApiKeyOut.from_entity(entity))

    @router.get(
        "",
        dependencies=admin,
        response_model=List[ApiKeyOut],
        response_model_by_alias=True,
        summary="List API keys",
    )
    async def list_api_keys(
        issuer: ApiKeyIssuer = Depends(depends_issuer),
        offset: Annotated[int, Query(ge=0, description="Items to skip")] = 0,
        limit: Annotated[int, Query(gt=0, le=100, description="Page size")] = 50,
    ) -> List[ApiKeyOut]:
        items = await issuer.list(limit=limit, offset=offset)
        return [ApiKeyOut.from_entity(e) for e in items]

    @router.get(
        "/{api_key_id}",
        dependencies=admin,
        response_model=ApiKeyOut,
        response_model_by_alias=True,
        responses=_ERROR_RESPONSES,
        summary="Get an API key by ID",
    )
    async def get_api_key(
        api_key_id: str,
        issuer: ApiKeyIssuer = Depends(depends_issuer),
    ) -> ApiKeyOut:
        return ApiKeyOut.from_entity(await issuer.get(api_key_id))

    @router.post(
        "/{api_key_id}/activate",
        dependencies=admin,
        response_model=ApiKeyOut,
        response_model_by_alias=True,
        responses=_ERROR_RESPONSES,
    )
    async def activate_api_key(
        api_key_id: str,
        issuer: ApiKeyIssuer = Depends(depends_issuer),
    ) -> ApiKeyOut:
        return ApiKeyOut.from_entity(await issuer.activate(api_key_id))

    @router.post(
        "/{api_key_id}/deactivate",
        dependencies=admin,
        response_model=ApiKeyOut,
        response_model_by_alias=True,
        responses=_ERROR_RESPONSES,
    )
    async def deactivate_api_key(
        api_key_id: str,
        issuer: ApiKeyIssuer = Depends(depends_issuer),
    ) -> ApiKeyOut:
        """Deactivate an API key by ID. Subsequent requests with it fail as invalid."""
        return ApiKeyOut.from_entity(await issuer.deactivate(api_key_id))

    return router
