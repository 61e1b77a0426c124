"""S3-compatible blob store backed by boto3."""

try:
    import boto3  # noqa: F401
except ModuleNotFoundError as e:
    raise ImportError("S3 backend requires 'boto3'. Install it with: pip install boto3") from e

import asyncio
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from fastapi_presign.domain.errors import BlobStoreError
from fastapi_presign.storage.base import AbstractBlobStore, ObjectHead

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


class S3BlobStore(AbstractBlobStore):
    """S3/MinIO blob store issuing SigV4 presigned URLs.

    boto3 is synchronous; every call runs in a worker thread so the event
    loop never blocks.

    Args:
        bucket: Bucket holding every object.
        client: Optional pre-built boto3 S3 client. Built from the other
            arguments when omitted.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        force_path_style: bool = False,
        client: Optional[Any] = None,
    ) -> None:
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region_name,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path" if force_path_style else "auto"},
            ),
        )

    async def _sign(self, operation: str, params: Dict[str, Any], expires_in: int) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                operation,
                Params=params,
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as exc:
            raise BlobStoreError(f"Failed to sign {operation} URL", cause=exc) from exc

    async def presign_put(self, key: str, content_type: str, cache_control: str, expires_in: int) -> str:
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "ContentType": content_type,
            "CacheControl": cache_control,
        }
        return await self._sign("put_object", params, expires_in)

    async def presign_get(
        self,
        key: str,
        expires_in: int,
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str:
        params: Dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if cache_control:
            params["ResponseCacheControl"] = cache_control
        if content_disposition:
            params["ResponseContentDisposition"] = content_disposition
        return await self._sign("get_object", params, expires_in)

    async def head(self, key: str) -> Optional[ObjectHead]:
        try:
            response = await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                return None
            raise BlobStoreError(f"HEAD failed for '{key}'", cause=exc) from exc
        except BotoCoreError as exc:
            raise BlobStoreError(f"HEAD failed for '{key}'", cause=exc) from exc

        size = response.get("ContentLength")
        etag = (response.get("ETag") or "").replace('"', "") or None
        return ObjectHead(size=size if isinstance(size, int) else None, etag=etag)
