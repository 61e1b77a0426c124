"""Unit tests for the boto3-backed blob store, with a mocked client."""

from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from fastapi_presign.domain.errors import BlobStoreError
from fastapi_presign.storage.s3 import S3BlobStore


def _client_error(code: str, operation: str = "HeadObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.generate_presigned_url.return_value = "https://s3.example.com/signed"
    return client


@pytest.fixture
def store(client: MagicMock) -> S3BlobStore:
    return S3BlobStore(bucket="media", client=client)


class TestPresign:
    @pytest.mark.asyncio
    async def test_put_params(self, store: S3BlobStore, client: MagicMock):
        url = await store.presign_put("a/b.png", "image/png", "public, max-age=31536000, immutable", 60)

        assert url == "https://s3.example.com/signed"
        client.generate_presigned_url.assert_called_once_with(
            "put_object",
            Params={
                "Bucket": "media",
                "Key": "a/b.png",
                "ContentType": "image/png",
                "CacheControl": "public, max-age=31536000, immutable",
            },
            ExpiresIn=60,
        )

    @pytest.mark.asyncio
    async def test_get_params(self, store: S3BlobStore, client: MagicMock):
        await store.presign_get("a/b.png", 120, cache_control="private, max-age=0", content_disposition="attachment")

        client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={
                "Bucket": "media",
                "Key": "a/b.png",
                "ResponseCacheControl": "private, max-age=0",
                "ResponseContentDisposition": "attachment",
            },
            ExpiresIn=120,
        )

    @pytest.mark.asyncio
    async def test_get_minimal_params(self, store: S3BlobStore, client: MagicMock):
        await store.presign_get("k", 10)

        _, kwargs = client.generate_presigned_url.call_args
        assert kwargs["Params"] == {"Bucket": "media", "Key": "k"}

    @pytest.mark.asyncio
    async def test_sign_failure(self, store: S3BlobStore, client: MagicMock):
        client.generate_presigned_url.side_effect = EndpointConnectionError(endpoint_url="https://s3.example.com")

        with pytest.raises(BlobStoreError):
            await store.presign_put("k", "text/plain", "no-cache", 60)


class TestHead:
    @pytest.mark.asyncio
    async def test_found(self, store: S3BlobStore, client: MagicMock):
        client.head_object.return_value = {"ContentLength": 42, "ETag": '"abc123"'}

        head = await store.head("k")

        assert head.size == 42
        assert head.etag == "abc123"
        client.head_object.assert_called_once_with(Bucket="media", Key="k")

    @pytest.mark.asyncio
    async def test_missing_metadata(self, store: S3BlobStore, client: MagicMock):
        client.head_object.return_value = {}

        head = await store.head("k")

        assert head.size is None
        assert head.etag is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["404", "NoSuchKey", "NotFound"])
    async def test_not_found(self, store: S3BlobStore, client: MagicMock, code: str):
        client.head_object.side_effect = _client_error(code)

        assert await store.head("k") is None

    @pytest.mark.asyncio
    async def test_other_error(self, store: S3BlobStore, client: MagicMock):
        client.head_object.side_effect = _client_error("403")

        with pytest.raises(BlobStoreError):
            await store.head("k")

    @pytest.mark.asyncio
    async def test_transport_error(self, store: S3BlobStore, client: MagicMock):
        client.head_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.example.com")

        with pytest.raises(BlobStoreError):
            await store.head("k")


def test_builds_sigv4_client():
    store = S3BlobStore(
        bucket="media",
        endpoint_url="http://localhost:9000",
        region_name="us-east-1",
        access_key="minio",
        secret_key="minio-secret",
        force_path_style=True,
    )

    config = store._client.meta.config
    assert config.signature_version == "s3v4"
    assert config.s3 == {"addressing_style": "path"}
