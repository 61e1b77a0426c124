import importlib.metadata

from fastapi_presign.config import Settings, StorageConfig
from fastapi_presign.domain.codec import KeyCodec
from fastapi_presign.domain.entities import ApiKey, FileObject, Project
from fastapi_presign.domain.scopes import Scope, ScopeSet
from fastapi_presign.services import (
    ApiKeyIssuer,
    DownloadGrant,
    KeyAuthenticator,
    ObjectAccessGrantor,
    ProjectResolver,
    UploadGrant,
)

__all__ = [
    "ApiKey",
    "ApiKeyIssuer",
    "DownloadGrant",
    "FileObject",
    "KeyAuthenticator",
    "KeyCodec",
    "ObjectAccessGrantor",
    "Project",
    "ProjectResolver",
    "Scope",
    "ScopeSet",
    "Settings",
    "StorageConfig",
    "UploadGrant",
]

__version__ = importlib.metadata.version("fastapi_presign")
