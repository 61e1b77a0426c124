from typing import Any, Optional


class PresignError(Exception):
    """Base exception for every error that can reach a caller.

    Attributes:
        status_code: HTTP status equivalent of the error.
        code: Stable machine-readable error code.
    """

    status_code: int = 500
    code: str = "internal_error"


# --- Authentication / authorization ---


INVALID_CREDENTIAL_MESSAGE = "Invalid API key"
"""Shared by unknown and inactive keys."""


class AuthError(PresignError):
    """Base exception for credential verification failures."""


class MissingCredential(AuthError):
    """Raised when no API key is carried by the request."""

    status_code = 401
    code = "missing_credential"


class InvalidCredential(AuthError):
    """Raised when the API key is unknown or inactive.

    Notes:
        Both cases share this single error so the response does not reveal
        whether the key exists.
    """

    status_code = 401
    code = "invalid_credential"


class InsufficientScope(AuthError):
    """Raised when the API key lacks one of the required scopes."""

    status_code = 403
    code = "insufficient_scope"


class OriginUnavailable(AuthError):
    """Raised when the key is origin-restricted but no client address can be resolved."""

    status_code = 403
    code = "origin_unavailable"


class OriginDenied(AuthError):
    """Raised when the resolved client address matches none of the allowed origins."""

    status_code = 403
    code = "origin_denied"


# --- Request / resource errors ---


class BadInput(PresignError):
    """Raised for malformed input, invalid key format or bucket mismatch."""

    status_code = 400
    code = "bad_input"


class NotFound(PresignError):
    """Raised when a key or object record does not exist."""

    status_code = 404
    code = "not_found"


class ObjectNotUploaded(NotFound):
    """Raised when a metadata record exists but the blob store has no object for it."""

    code = "object_not_uploaded"


class Forbidden(PresignError):
    """Raised on cross-project access to an object."""

    status_code = 403
    code = "forbidden"


class Conflict(PresignError):
    """Raised when a generated key collides with a stored one."""

    status_code = 409
    code = "conflict"


class PartialSuccess(PresignError):
    """Raised when a grant was issued but its metadata bookkeeping failed.

    The grant is still valid and is carried on the exception so the caller
    can hand it out together with the warning.

    Attributes:
        grant: The already issued grant.
    """

    status_code = 207
    code = "partial_success"

    def __init__(self, message: str, grant: Any) -> None:
        super().__init__(message)
        self.grant = grant


class ServerMisconfigured(PresignError):
    """Raised when required storage settings are missing or blank."""

    status_code = 500
    code = "server_misconfigured"


class StorageUnavailable(PresignError):
    """Raised when the blob store could not sign or answer a request."""

    status_code = 503
    code = "storage_unavailable"


# --- Collaborator errors (translated before reaching a caller) ---


class PersistenceError(Exception):
    """Generic metadata store failure."""


class DuplicateEntry(PersistenceError):
    """Raised by repositories when a uniqueness constraint is violated."""


class MissingReference(PersistenceError):
    """Raised by repositories when a referenced row does not exist."""


class BlobStoreError(Exception):
    """Raised by blob store adapters when a call fails for another reason than "not found"."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
