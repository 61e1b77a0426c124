import re
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Optional

import structlog

from fastapi_presign.config import StorageConfig
from fastapi_presign.domain.entities import FileObject
from fastapi_presign.domain.errors import (
    BadInput,
    BlobStoreError,
    Forbidden,
    MissingCredential,
    NotFound,
    ObjectNotUploaded,
    PartialSuccess,
    PersistenceError,
    StorageUnavailable,
)
from fastapi_presign.repositories.base import AbstractFileObjectRepository
from fastapi_presign.storage.base import AbstractBlobStore, ObjectHead
from fastapi_presign.utils import clamp, today_factory

logger = structlog.get_logger()

TTL_MIN = 10
TTL_MAX = 600
TTL_DEFAULT = 60

DEFAULT_FOLDER = "uploads"
DEFAULT_EXTENSION = "bin"
DEFAULT_MIME = "application/octet-stream"

MAX_FOLDER_DEPTH = 8
MAX_SEGMENT_LENGTH = 64
MAX_EXTENSION_LENGTH = 16

PUBLIC_CACHE_CONTROL = "public, max-age=31536000, immutable"
PRIVATE_CACHE_CONTROL = "private, max-age=0, no-store"
DOWNLOAD_CACHE_CONTROL = "private, max-age=30"

_SEGMENT_DISALLOWED = re.compile(r"[^A-Za-z0-9._-]")
_EXTENSION_DISALLOWED = re.compile(r"[^a-z0-9]")
_CHECKSUM = re.compile(r"^[0-9a-f]{64}$")
_MIME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*/[A-Za-z0-9][A-Za-z0-9!#$&^_.+-]*$")


def clamp_ttl(ttl: Optional[int]) -> int:
    """Clamp a requested lifetime into [10, 600] seconds; missing or zero means 60."""
    if not ttl:
        return TTL_DEFAULT
    return clamp(int(ttl), TTL_MIN, TTL_MAX)


def sanitize_folder(folder: Optional[str]) -> str:
    """Reduce ``folder`` to a relative path without traversal segments.

    Example::

        sanitize_folder("../../etc")  # "etc"
        sanitize_folder("")  # "uploads"
    """
    if not folder:
        return DEFAULT_FOLDER

    segments = []
    for raw in re.split(r"[\\/]+", folder):
        segment = _SEGMENT_DISALLOWED.sub("", raw)[:MAX_SEGMENT_LENGTH]
        # "." and ".." (and any dot-only run) would navigate.
        if not segment.strip("."):
            continue
        segments.append(segment)

    return "/".join(segments[:MAX_FOLDER_DEPTH]) or DEFAULT_FOLDER


def sanitize_extension(extension: Optional[str]) -> str:
    if not extension:
        return DEFAULT_EXTENSION

    token = _EXTENSION_DISALLOWED.sub("", extension.strip().lstrip(".").lower())
    if not token or len(token) > MAX_EXTENSION_LENGTH:
        return DEFAULT_EXTENSION

    return token


def sanitize_mime(mime: Optional[str]) -> str:
    if not mime:
        return DEFAULT_MIME

    mime = mime.strip()
    return mime if _MIME.match(mime) else DEFAULT_MIME


def sanitize_checksum(checksum: Optional[str]) -> Optional[str]:
    """Keep a SHA-256 hex digest; anything else is treated as absent."""
    if not checksum:
        return None

    checksum = checksum.strip().lower()
    return checksum if _CHECKSUM.match(checksum) else None


def sanitize_key(key: Optional[str]) -> str:
    if not key or not isinstance(key, str):
        return ""
    return key.strip().lstrip("/").strip()


def attachment_disposition(name: Optional[str]) -> Optional[str]:
    if not name or not name.strip():
        return None
    return f'attachment; filename="{name.strip().replace(chr(34), "")}"'


@dataclass(frozen=True)
class UploadGrant:
    """Signed permission to PUT exactly one object.

    Attributes:
        upload_url: Presigned PUT URL.
        key: Object key the URL is bound to.
        expires_in: Effective lifetime in seconds.
        public_url: Where the object will be readable once public.
        tracked: False when the metadata record could not be written.
    """

    upload_url: str
    key: str
    expires_in: int
    public_url: str
    tracked: bool = True


@dataclass(frozen=True)
class DownloadGrant:
    url: str
    expires_in: int
    key: str


class ObjectAccessGrantor:
    """Issue time-boxed signed permissions and keep object metadata in sync.

    The upload path is a three-step state machine: a grant is minted and a
    provisional record written, the client PUTs the object, then
    :meth:`confirm_upload` re-reads the object from the blob store and only
    then fills ``size`` and ``etag``.

    Args:
        objects: Object metadata repository.
        blobs: Blob store.
        config: Validated storage configuration.
        key_factory: Returns the unique part of new object keys.
    """

    def __init__(
        self,
        objects: AbstractFileObjectRepository,
        blobs: AbstractBlobStore,
        config: StorageConfig,
        key_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._objects = objects
        self._blobs = blobs
        self.config = config
        self._key_factory = key_factory

    def build_key(self, folder: Optional[str], extension: Optional[str]) -> str:
        """Derive ``folder/YYYY-MM-DD/<uuid>.<ext>`` with the current UTC day."""
        return f"{sanitize_folder(folder)}/{today_factory()}/{self._key_factory()}.{sanitize_extension(extension)}"

    async def issue_upload_grant(
        self,
        project_id: Optional[str],
        mime: Optional[str] = None,
        extension: Optional[str] = None,
        folder: Optional[str] = None,
        is_public: bool = True,
        checksum: Optional[str] = None,
        ttl: Optional[int] = None,
    ) -> UploadGrant:
        """Mint a presigned PUT and write the provisional metadata record.

        Args:
            project_id: Project of the authenticated caller, or None for an
                anonymous request (only if the configuration allows it).

        Raises:
            MissingCredential: Anonymous request while anonymous uploads are disabled.
            StorageUnavailable: The blob store could not sign the URL.
            PartialSuccess: The URL was signed but the record was not written.
                The grant is available on the exception.
        """
        if project_id is None and not self.config.allow_anonymous_upload:
            raise MissingCredential("Missing API key")

        expires_in = clamp_ttl(ttl)
        key = self.build_key(folder, extension)
        content_type = sanitize_mime(mime)
        cache_control = PUBLIC_CACHE_CONTROL if is_public else PRIVATE_CACHE_CONTROL

        try:
            upload_url = await self._blobs.presign_put(key, content_type, cache_control, expires_in)
        except BlobStoreError as exc:
            logger.error("upload.sign.failed", key=key, error=str(exc))
            raise StorageUnavailable("Failed to sign upload URL") from exc

        grant = UploadGrant(
            upload_url=upload_url,
            key=key,
            expires_in=expires_in,
            public_url=self.config.public_url(key),
        )

        record = FileObject(
            key=key,
            bucket=self.config.bucket,
            mime_type=content_type,
            is_public=is_public,
            checksum=sanitize_checksum(checksum),
            project_id=project_id,
        )

        try:
            await self._objects.create(record)
        except PersistenceError as exc:
            logger.warning("upload.metadata.failed", key=key, project_id=project_id, error=str(exc))
            raise PartialSuccess(
                "Upload URL issued but metadata tracking failed",
                grant=replace(grant, tracked=False),
            ) from exc

        logger.info(
            "upload.grant.issued",
            key=key,
            project_id=project_id,
            is_public=is_public,
            expires_in=expires_in,
        )
        return grant

    async def confirm_upload(self, project_id: Optional[str], key: Optional[str]) -> FileObject:
        """Promote a provisional record to confirmed after checking the blob store.

        Idempotent: a second call re-reads the same object and writes the
        same values.

        Raises:
            BadInput: Empty key or record in another bucket.
            NotFound: No record for the key.
            Forbidden: Record owned by another project.
            ObjectNotUploaded: The client never completed the PUT.
        """
        key = sanitize_key(key)
        if not key:
            raise BadInput("key required")

        record = await self._get_record(key)
        if record is None:
            raise NotFound("Metadata not found for this key")

        if record.project_id and record.project_id != project_id:
            raise Forbidden("Forbidden")

        self._ensure_same_bucket(record)

        head = await self._head(key)
        if head is None:
            raise ObjectNotUploaded("Object not found in storage")

        record.confirm(size=head.size, etag=head.etag.replace('"', "") if head.etag else None, project_id=project_id)

        try:
            updated = await self._objects.update(record)
        except PersistenceError as exc:
            raise StorageUnavailable("Failed to update object metadata") from exc

        if updated is None:
            raise NotFound("Metadata not found for this key")

        logger.info("upload.confirmed", key=key, project_id=updated.project_id, size=updated.size)
        return updated

    async def issue_download_grant(
        self,
        project_id: Optional[str],
        key: Optional[str],
        ttl: Optional[int] = None,
        attachment_name: Optional[str] = None,
    ) -> DownloadGrant:
        """Mint a presigned GET for ``key``.

        Raises:
            BadInput: Empty key or record in another bucket.
            Forbidden: Private object owned by another project.
            NotFound: No record (strict mode) or no object at all.
        """
        expires_in = clamp_ttl(ttl)
        key = sanitize_key(key)
        if not key:
            raise BadInput("key required")

        record = await self._get_record(key)

        if record is not None:
            if not record.is_public and not record.is_owned_by(project_id):
                raise Forbidden("Forbidden")

            self._ensure_same_bucket(record)
        elif self.config.strict_downloads:
            raise NotFound("Not found")
        elif await self._head(key) is None:
            raise NotFound("Not found")
        else:
            logger.warning("download.untracked", key=key, project_id=project_id)

        try:
            url = await self._blobs.presign_get(
                key,
                expires_in,
                cache_control=DOWNLOAD_CACHE_CONTROL,
                content_disposition=attachment_disposition(attachment_name),
            )
        except BlobStoreError as exc:
            logger.error("download.sign.failed", key=key, error=str(exc))
            raise StorageUnavailable("Failed to sign download URL") from exc

        logger.info("download.grant.issued", key=key, project_id=project_id, expires_in=expires_in)
        return DownloadGrant(url=url, expires_in=expires_in, key=key)

    async def _get_record(self, key: str) -> Optional[FileObject]:
        try:
            return await self._objects.get_by_key(key)
        except PersistenceError as exc:
            raise StorageUnavailable("Metadata store unavailable") from exc

    async def _head(self, key: str) -> Optional[ObjectHead]:
        try:
            return await self._blobs.head(key)
        except BlobStoreError as exc:
            raise StorageUnavailable("Storage probe failed") from exc

    def _ensure_same_bucket(self, record: FileObject) -> None:
        if record.bucket and record.bucket != self.config.bucket:
            raise BadInput("Bucket mismatch")
