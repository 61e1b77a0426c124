from .auth import KeyAuthenticator
from .keys import ApiKeyIssuer
from .objects import DownloadGrant, ObjectAccessGrantor, UploadGrant
from .projects import ProjectResolver

__all__ = [
    "ApiKeyIssuer",
    "DownloadGrant",
    "KeyAuthenticator",
    "ObjectAccessGrantor",
    "ProjectResolver",
    "UploadGrant",
]
