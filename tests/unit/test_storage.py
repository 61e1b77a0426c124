from urllib.parse import parse_qs, urlsplit

import pytest

from fastapi_presign.storage.in_memory import InMemoryBlobStore


@pytest.fixture
def store() -> InMemoryBlobStore:
    return InMemoryBlobStore(bucket="media")


class TestInMemoryBlobStore:
    @pytest.mark.asyncio
    async def test_presign_put(self, store: InMemoryBlobStore):
        url = await store.presign_put("a/b c.png", "image/png", "no-cache", 60)
        parts = urlsplit(url)
        query = parse_qs(parts.query)

        assert parts.netloc == "blob.local"
        assert parts.path == "/media/a/b%20c.png"
        assert query["Content-Type"] == ["image/png"]
        assert query["Cache-Control"] == ["no-cache"]
        assert query["X-Signature"]

    @pytest.mark.asyncio
    async def test_presign_get_response_overrides(self, store: InMemoryBlobStore):
        url = await store.presign_get("k", 60, cache_control="private", content_disposition='attachment; filename="x"')
        query = parse_qs(urlsplit(url).query)

        assert query["response-cache-control"] == ["private"]
        assert query["response-content-disposition"] == ['attachment; filename="x"']

    @pytest.mark.asyncio
    async def test_signatures_bound_to_method(self, store: InMemoryBlobStore):
        put = parse_qs(urlsplit(await store.presign_put("k", "text/plain", "no-cache", 60)).query)
        get = parse_qs(urlsplit(await store.presign_get("k", 60)).query)

        assert put["X-Signature"] != get["X-Signature"]

    @pytest.mark.asyncio
    async def test_head(self, store: InMemoryBlobStore):
        assert await store.head("k") is None

        store.put_object("k", b"hello")
        head = await store.head("k")

        assert head.size == 5
        assert head.etag == "5d41402abc4b2a76b9719d911017c592"

        store.delete_object("k")
        assert await store.head("k") is None
