from contextlib import AbstractAsyncContextManager
from typing import Awaitable, Callable, Optional

from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.services.auth import KeyAuthenticator
from fastapi_presign.services.keys import ApiKeyIssuer

SecurityDependency = Callable[..., Awaitable[Optional[ApiKey]]]
"""Type alias for a security dependency yielding the authenticated key (or None when optional)."""

IssuerFactory = Callable[[], AbstractAsyncContextManager[ApiKeyIssuer]]
"""Callable returning an async context manager that yields an API key issuer."""

AuthenticatorFactory = Callable[[], AbstractAsyncContextManager[KeyAuthenticator]]
"""Callable returning an async context manager that yields a key authenticator."""
