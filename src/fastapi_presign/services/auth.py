import asyncio
from datetime import datetime
from random import SystemRandom
from typing import Awaitable, Callable, Iterable, List, Mapping, Optional, Sequence, Set

import structlog

from fastapi_presign.domain import network
from fastapi_presign.domain.codec import KeyCodec
from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.domain.errors import (
    INVALID_CREDENTIAL_MESSAGE,
    AuthError,
    InvalidCredential,
    MissingCredential,
    OriginDenied,
    OriginUnavailable,
    PersistenceError,
    StorageUnavailable,
)
from fastapi_presign.repositories.base import AbstractApiKeyRepository
from fastapi_presign.utils import datetime_factory

logger = structlog.get_logger()

UsageRecorder = Callable[[str, datetime], Awaitable[None]]
"""Callable persisting ``last_used_at`` for a key ID."""

AUTHORIZATION_HEADER = "authorization"
API_KEY_HEADER = "x-api-key"
BEARER_SCHEME = "bearer"

DEFAULT_ORIGIN_HEADERS: Sequence[str] = ("cf-connecting-ip", "x-real-ip", "x-forwarded-for")
"""Trusted-proxy single-hop header, reverse-proxy real-IP header, forwarded-for chain."""

_background_tasks: Set[asyncio.Task] = set()
"""Detached usage updates; referenced here so they are not garbage collected mid-flight."""


def _get_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        # Plain dicts are case-sensitive; Starlette headers are not.
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def read_api_key_from_headers(headers: Mapping[str, str]) -> Optional[str]:
    """Extract the API key from ``Authorization: Bearer`` or ``X-API-Key``."""
    authorization = _get_header(headers, AUTHORIZATION_HEADER)
    if authorization:
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() == BEARER_SCHEME and token.strip():
            return token.strip()

    api_key = _get_header(headers, API_KEY_HEADER)
    return api_key.strip() if api_key and api_key.strip() else None


def resolve_client_origin(
    headers: Mapping[str, str],
    header_names: Sequence[str] = DEFAULT_ORIGIN_HEADERS,
) -> Optional[str]:
    """Resolve the caller's address from proxy headers, most trusted first.

    Notes:
        For a comma-separated chain (forwarded-for) only the first hop is used.
    """
    for name in header_names:
        value = _get_header(headers, name.lower())
        if not value:
            continue

        first_hop = value.split(",")[0].strip()
        if first_hop:
            return first_hop

    return None


class KeyAuthenticator:
    """Verify API keys and enforce scope and origin policy.

    Args:
        repo: API key repository.
        codec: Key codec used to hash credentials. Defaults to SHA-256.
        usage_recorder: Callable persisting ``last_used_at``. Defaults to
            ``repo.touch``. Runs detached from the request.
        origin_headers: Header names consulted for the client address, in trust order.
        rrd: Random response delay for failed attempts, in seconds. 0 disables it.

    Example::

        authenticator = KeyAuthenticator(repo=InMemoryApiKeyRepository(), rrd=0)
        entity = await authenticator.authenticate(key, required_scopes=["upload"])
    """

    def __init__(
        self,
        repo: AbstractApiKeyRepository,
        codec: Optional[KeyCodec] = None,
        usage_recorder: Optional[UsageRecorder] = None,
        origin_headers: Sequence[str] = DEFAULT_ORIGIN_HEADERS,
        rrd: float = 1 / 3,
    ) -> None:
        self._repo = repo
        self._codec = codec or KeyCodec()
        self._usage_recorder = usage_recorder or repo.touch
        self.origin_headers = tuple(h.lower() for h in origin_headers)
        self.rrd = rrd
        self._system_random = SystemRandom()

    async def authenticate_headers(
        self,
        headers: Mapping[str, str],
        required_scopes: Optional[Iterable[str]] = None,
    ) -> ApiKey:
        """Authenticate a request from its headers alone."""
        credential = read_api_key_from_headers(headers)
        client_origin = resolve_client_origin(headers, self.origin_headers)
        return await self.authenticate(credential, required_scopes, client_origin)

    async def authenticate(
        self,
        credential: Optional[str],
        required_scopes: Optional[Iterable[str]] = None,
        client_origin: Optional[str] = None,
    ) -> ApiKey:
        """Resolve a credential to its key record, or raise.

        Args:
            credential: Plaintext API key as presented by the caller.
            required_scopes: Scopes the key must all carry.
            client_origin: Resolved client address, only consulted when the
                key has an origin allowlist.

        Raises:
            MissingCredential: No credential given.
            InvalidCredential: Unknown or inactive key (indistinguishable).
            InsufficientScope: A required scope is missing.
            OriginUnavailable: Key is origin-restricted and no address is known.
            OriginDenied: Address matches none of the allowed origins.
            StorageUnavailable: The key store could not be read.
        """
        try:
            entity = await self._authenticate(credential, list(required_scopes or []), client_origin)
        except AuthError as exc:
            logger.info(
                "auth.denied",
                reason=getattr(exc, "code", "auth_error"),
                public_id=self._codec.public_id_of(credential),
            )
            if self.rrd:
                # Small jitter to make timing-based probing harder to profile.
                await asyncio.sleep(self._system_random.uniform(self.rrd, self.rrd * 2))
            raise

        self._record_usage(entity)
        return entity

    async def _authenticate(
        self,
        credential: Optional[str],
        required_scopes: List[str],
        client_origin: Optional[str],
    ) -> ApiKey:
        if credential is None or not credential.strip():
            raise MissingCredential("Missing API key")

        try:
            entity = await self._repo.get_by_hash(self._codec.hash(credential.strip()))
        except PersistenceError as exc:
            raise StorageUnavailable("Metadata store unavailable") from exc

        if entity is None:
            raise InvalidCredential(INVALID_CREDENTIAL_MESSAGE)

        entity.ensure_can_authenticate()
        entity.ensure_valid_scopes(required_scopes)

        if entity.is_origin_restricted:
            if not client_origin:
                raise OriginUnavailable("Client address could not be determined")

            if not network.matches_any(client_origin, entity.allowed_origins):
                raise OriginDenied("IP not allowed")

        return entity

    def _record_usage(self, entity: ApiKey) -> None:
        """Schedule the ``last_used_at`` update without awaiting it."""
        entity.touch()
        try:
            task = asyncio.ensure_future(self._usage_recorder(entity.id_, entity.last_used_at or datetime_factory()))
        except Exception as exc:
            logger.debug("api_key.touch.failed", error=repr(exc))
            return

        _background_tasks.add(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        _background_tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            logger.debug("api_key.touch.failed", error=repr(exc))

    @staticmethod
    async def drain() -> None:
        """Wait for pending usage updates of the running loop; their failures are still discarded."""
        loop = asyncio.get_running_loop()
        pending = [task for task in _background_tasks if task.get_loop() is loop]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
