from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ObjectHead:
    """Attributes of an object as reported by a metadata-only probe."""

    size: Optional[int]
    etag: Optional[str]


class AbstractBlobStore(ABC):
    """Presign-and-HEAD contract of an object storage backend.

    Notes:
        Every method raises :class:`BlobStoreError` on failure. ``head``
        returns None when the object does not exist, which is not a failure.
    """

    bucket: str

    @abstractmethod
    async def presign_put(
        self,
        key: str,
        content_type: str,
        cache_control: str,
        expires_in: int,
    ) -> str:
        """Return a URL allowing a single-key PUT until ``expires_in`` seconds from now."""
        ...

    @abstractmethod
    async def presign_get(
        self,
        key: str,
        expires_in: int,
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str:
        """Return a read-only URL for ``key`` valid ``expires_in`` seconds."""
        ...

    @abstractmethod
    async def head(self, key: str) -> Optional[ObjectHead]:
        ...
