import hashlib
import hmac
import time
from typing import Dict, Optional
from urllib.parse import quote, urlencode

from fastapi_presign.storage.base import AbstractBlobStore, ObjectHead


class InMemoryBlobStore(AbstractBlobStore):
    """In-memory blob store.

    Notes:
        Meant for tests and local development. Signed URLs carry an HMAC
        over method, key and expiry but point at a fake host; objects are
        placed with :meth:`put_object` to simulate a client upload.
    """

    def __init__(
        self,
        bucket: str = "local-bucket",
        endpoint: str = "https://blob.local",
        signing_secret: str = "in-memory-signing-secret",
    ) -> None:
        self.bucket = bucket
        self._endpoint = endpoint.rstrip("/")
        self._secret = signing_secret.encode("utf-8")
        self._objects: Dict[str, bytes] = {}

    def _sign(self, method: str, key: str, expires: int) -> str:
        message = f"{method}\n{self.bucket}/{key}\n{expires}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def _url(self, method: str, key: str, expires_in: int, extra: Dict[str, str]) -> str:
        expires = int(time.time()) + expires_in
        params = {"X-Expires": str(expires), **extra, "X-Signature": self._sign(method, key, expires)}
        return f"{self._endpoint}/{self.bucket}/{quote(key)}?{urlencode(params)}"

    async def presign_put(self, key: str, content_type: str, cache_control: str, expires_in: int) -> str:
        return self._url("PUT", key, expires_in, {"Content-Type": content_type, "Cache-Control": cache_control})

    async def presign_get(
        self,
        key: str,
        expires_in: int,
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str:
        extra: Dict[str, str] = {}
        if cache_control:
            extra["response-cache-control"] = cache_control
        if content_disposition:
            extra["response-content-disposition"] = content_disposition
        return self._url("GET", key, expires_in, extra)

    async def head(self, key: str) -> Optional[ObjectHead]:
        body = self._objects.get(key)
        if body is None:
            return None
        return ObjectHead(size=len(body), etag=hashlib.md5(body, usedforsecurity=False).hexdigest())

    def put_object(self, key: str, body: bytes) -> None:
        """Store an object as if a client had completed a signed PUT."""
        self._objects[key] = body

    def delete_object(self, key: str) -> None:
        self._objects.pop(key, None)
