"""Unit tests for the HTTP layer.

Tests drive the full application with a temporary SQLite database and the
in-memory blob store. Focus on behavior, not implementation details.
"""

import asyncio
from typing import Iterator, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from fastapi_presign.app import create_app, create_codec
from fastapi_presign.config import Settings
from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.domain.errors import PersistenceError
from fastapi_presign.repositories.sql import (
    SqlAlchemyApiKeyRepository,
    SqlAlchemyFileObjectRepository,
    SqlAlchemyProjectRepository,
    enable_sqlite_foreign_keys,
    ensure_tables,
)
from fastapi_presign.services.keys import ApiKeyIssuer
from fastapi_presign.services.projects import ProjectResolver
from fastapi_presign.storage.in_memory import InMemoryBlobStore

BUCKET = "test-bucket"
PUBLIC_BASE = "https://cdn.example.com"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'presign.sqlite3'}",
        s3_bucket=BUCKET,
        cdn_public_base=PUBLIC_BASE,
    )


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore(bucket=BUCKET)


@pytest.fixture
def client(settings: Settings, blob_store: InMemoryBlobStore) -> Iterator[TestClient]:
    """Test client running the app lifespan (table creation)."""
    app = create_app(settings=settings, blob_store=blob_store, rrd=0)
    with TestClient(app) as client:
        yield client


async def _issue(settings: Settings, **kwargs) -> Tuple[ApiKey, str]:
    engine = create_async_engine(settings.database_url)
    enable_sqlite_foreign_keys(engine)
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session_maker() as session:
            await ensure_tables(session)
            issuer = ApiKeyIssuer(
                repo=SqlAlchemyApiKeyRepository(session),
                projects=ProjectResolver(SqlAlchemyProjectRepository(session)),
                codec=create_codec(settings),
            )
            result = await issuer.issue(**kwargs)
            await session.commit()
            return result
    finally:
        await engine.dispose()


def issue_key(settings: Settings, project_id: str = "p1", **kwargs) -> str:
    """Issue a key straight through the service layer and return the plaintext."""
    _, key = asyncio.run(_issue(settings, project_id=project_id, **kwargs))
    return key


async def _drop_table(settings: Settings, table: str) -> None:
    engine = create_async_engine(settings.database_url)
    try:
        async with engine.begin() as conn:
            await conn.execute(text(f"DROP TABLE {table}"))
    finally:
        await engine.dispose()


def drop_table(settings: Settings, table: str) -> None:
    """Take part of the metadata store away under the running app."""
    asyncio.run(_drop_table(settings, table))


def bearer(key: str) -> dict:
    return {"Authorization": f"Bearer {key}"}


class TestAuthentication:
    """Tests for credential extraction and the error bodies."""

    def test_missing_key(self, client: TestClient):
        response = client.post("/storage/confirm", json={"key": "k"})

        assert response.status_code == 401
        assert response.json() == {"error": "missing_credential", "detail": "Missing API key"}
        assert "WWW-Authenticate" in response.headers

    def test_invalid_key(self, client: TestClient):
        response = client.post("/storage/confirm", json={"key": "k"}, headers=bearer("sk_live_nope.nope"))

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_credential"
        assert "WWW-Authenticate" in response.headers

    def test_x_api_key_header(self, client: TestClient, settings: Settings):
        key = issue_key(settings)
        response = client.post("/storage/create-upload", json={}, headers={"X-API-Key": key})

        assert response.status_code == 200

    def test_insufficient_scope(self, client: TestClient, settings: Settings):
        key = issue_key(settings, scopes=["download"])
        response = client.post("/storage/create-upload", json={}, headers=bearer(key))

        assert response.status_code == 403
        assert response.json()["error"] == "insufficient_scope"

    def test_origin_rules(self, client: TestClient, settings: Settings):
        key = issue_key(settings, allowed_origins=["10.0.0.0/8"])

        allowed = client.post(
            "/storage/create-upload", json={}, headers={**bearer(key), "X-Forwarded-For": "10.1.2.3, 172.16.0.1"}
        )
        denied = client.post("/storage/create-upload", json={}, headers={**bearer(key), "X-Real-IP": "11.0.0.1"})
        unknown = client.post("/storage/create-upload", json={}, headers=bearer(key))

        assert allowed.status_code == 200
        assert denied.status_code == 403
        assert denied.json()["error"] == "origin_denied"
        assert unknown.status_code == 403
        assert unknown.json()["error"] == "origin_unavailable"

    def test_deactivated_key_rejected(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        created = client.post("/admin/keys", json={"projectId": "p1"}, headers=bearer(admin)).json()

        response = client.post(f"/admin/keys/{created['entity']['id']}/deactivate", headers=bearer(admin))
        assert response.status_code == 200
        assert response.json()["isActive"] is False

        rejected = client.post("/storage/confirm", json={"key": "k"}, headers=bearer(created["apiKey"]))
        unknown = client.post("/storage/confirm", json={"key": "k"}, headers=bearer("sk_live_nope.nope"))
        assert rejected.status_code == unknown.status_code == 401
        assert rejected.json() == unknown.json()
        assert rejected.json()["error"] == "invalid_credential"


class TestUploadFlow:
    """Tests for create-upload then confirm."""

    def test_create_upload(self, client: TestClient, settings: Settings):
        key = issue_key(settings)
        response = client.post(
            "/storage/create-upload",
            json={"mime": "image/png", "ext": "png", "folder": "../../avatars", "expiresIn": 5},
            headers=bearer(key),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["key"].startswith("avatars/")
        assert data["key"].endswith(".png")
        assert data["expiresIn"] == 10
        assert data["publicUrl"] == f"{PUBLIC_BASE}/{BUCKET}/{data['key']}"
        assert data["uploadUrl"].startswith("https://blob.local/")
        assert data["tracked"] is True

    def test_anonymous_upload_rejected(self, client: TestClient):
        response = client.post("/storage/create-upload", json={})

        assert response.status_code == 401
        assert response.json()["error"] == "missing_credential"

    def test_anonymous_upload_allowed(self, settings: Settings, blob_store: InMemoryBlobStore):
        settings = settings.model_copy(update={"allow_anonymous_upload": True})
        with TestClient(create_app(settings=settings, blob_store=blob_store, rrd=0)) as client:
            response = client.post("/storage/create-upload", json={"ext": "txt"})

        assert response.status_code == 200
        assert response.json()["key"].startswith("uploads/")

    def test_confirm_before_and_after_put(self, client: TestClient, settings: Settings, blob_store):
        key = issue_key(settings)
        grant = client.post("/storage/create-upload", json={}, headers=bearer(key)).json()

        early = client.post("/storage/confirm", json={"key": grant["key"]}, headers=bearer(key))
        assert early.status_code == 404
        assert early.json()["error"] == "object_not_uploaded"

        blob_store.put_object(grant["key"], b"hello world")
        confirmed = client.post("/storage/confirm", json={"key": grant["key"]}, headers=bearer(key))

        assert confirmed.status_code == 200
        assert confirmed.json()["ok"] is True
        assert confirmed.json()["size"] == 11
        assert confirmed.json()["key"] == grant["key"]

    def test_confirm_other_project(self, client: TestClient, settings: Settings, blob_store):
        owner = issue_key(settings, project_id="p1")
        stranger = issue_key(settings, project_id="p2")
        grant = client.post("/storage/create-upload", json={}, headers=bearer(owner)).json()
        blob_store.put_object(grant["key"], b"x")

        response = client.post("/storage/confirm", json={"key": grant["key"]}, headers=bearer(stranger))

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_partial_success(self, client: TestClient, settings: Settings, monkeypatch):
        key = issue_key(settings)

        async def failing_create(self, entity):
            raise PersistenceError("disk full")

        monkeypatch.setattr(SqlAlchemyFileObjectRepository, "create", failing_create)
        response = client.post("/storage/create-upload", json={}, headers=bearer(key))

        assert response.status_code == 207
        data = response.json()
        assert data["tracked"] is False
        assert data["uploadUrl"]
        assert data["warning"]


class TestDownload:
    def test_private_object(self, client: TestClient, settings: Settings, blob_store):
        owner = issue_key(settings, project_id="p1")
        stranger = issue_key(settings, project_id="p2")
        grant = client.post("/storage/create-upload", json={"isPublic": False}, headers=bearer(owner)).json()
        blob_store.put_object(grant["key"], b"x")

        forbidden = client.post("/storage/create-download", json={"key": grant["key"]}, headers=bearer(stranger))
        allowed = client.post(
            "/storage/create-download",
            json={"key": grant["key"], "expiresIn": 9999, "asAttachmentName": "report.pdf"},
            headers=bearer(owner),
        )

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["expiresIn"] == 600
        assert allowed.json()["key"] == grant["key"]
        assert "response-content-disposition" in allowed.json()["url"]

    def test_public_object_any_project(self, client: TestClient, settings: Settings):
        owner = issue_key(settings, project_id="p1")
        other = issue_key(settings, project_id="p2")
        grant = client.post("/storage/create-upload", json={}, headers=bearer(owner)).json()

        response = client.post("/storage/create-download", json={"key": grant["key"]}, headers=bearer(other))

        assert response.status_code == 200

    def test_untracked_object(self, client: TestClient, settings: Settings, blob_store):
        key = issue_key(settings)
        blob_store.put_object("untracked.bin", b"x")

        response = client.post("/storage/create-download", json={"key": "untracked.bin"}, headers=bearer(key))

        assert response.status_code == 404

    def test_upload_scope_cannot_download(self, client: TestClient, settings: Settings):
        key = issue_key(settings, scopes=["upload"])

        response = client.post("/storage/create-download", json={"key": "k"}, headers=bearer(key))

        assert response.status_code == 403


class TestAdmin:
    """Tests for the key management routes."""

    def test_requires_admin_scope(self, client: TestClient, settings: Settings):
        key = issue_key(settings)

        assert client.post("/admin/keys", json={}, headers=bearer(key)).status_code == 403
        assert client.post("/admin/keys", json={}).status_code == 401

    def test_create_key(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        response = client.post(
            "/admin/keys",
            json={
                "projectId": "acme",
                "projectName": "Acme",
                "scopes": ["upload"],
                "prefix": "sk_test",
                "allowedOrigins": ["192.168.0.0/16"],
            },
            headers=bearer(admin),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["apiKey"].startswith("sk_test_")
        assert data["entity"]["projectId"] == "acme"
        assert data["entity"]["scopes"] == ["upload"]
        assert data["entity"]["allowedOrigins"] == ["192.168.0.0/16"]
        assert "keyHash" not in data["entity"]

        grant = client.post(
            "/storage/create-upload",
            json={},
            headers={**bearer(data["apiKey"]), "CF-Connecting-IP": "192.168.4.4"},
        )
        assert grant.status_code == 200

    def test_create_key_defaults(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        data = client.post("/admin/keys", json={}, headers=bearer(admin)).json()

        assert data["apiKey"].startswith("sk_live_")
        assert data["entity"]["scopes"] == ["upload", "download"]

    def test_create_key_invalid_origin(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        response = client.post("/admin/keys", json={"allowedOrigins": ["10.0.0.0/99"]}, headers=bearer(admin))

        assert response.status_code == 400
        assert response.json()["error"] == "bad_input"

    def test_list_get_activate(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        created = client.post("/admin/keys", json={"projectId": "p1"}, headers=bearer(admin)).json()
        key_id = created["entity"]["id"]

        listed = client.get("/admin/keys", headers=bearer(admin))
        assert listed.status_code == 200
        assert key_id in [item["id"] for item in listed.json()]

        fetched = client.get(f"/admin/keys/{key_id}", headers=bearer(admin))
        assert fetched.json()["publicId"] == created["entity"]["publicId"]

        client.post(f"/admin/keys/{key_id}/deactivate", headers=bearer(admin))
        activated = client.post(f"/admin/keys/{key_id}/activate", headers=bearer(admin))
        assert activated.json()["isActive"] is True

    def test_get_missing(self, client: TestClient, settings: Settings):
        admin = issue_key(settings, scopes=["admin"])
        response = client.get("/admin/keys/missing", headers=bearer(admin))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestStoreOutage:
    """Metadata store failures are reported as 503, never as a bare 500."""

    def test_object_table_missing_on_download(self, client: TestClient, settings: Settings):
        key = issue_key(settings)
        drop_table(settings, "file_objects")

        response = client.post("/storage/create-download", json={"key": "k"}, headers=bearer(key))

        assert response.status_code == 503
        assert response.json()["error"] == "storage_unavailable"

    def test_key_table_missing_on_authentication(self, client: TestClient, settings: Settings):
        key = issue_key(settings)
        drop_table(settings, "api_keys")

        response = client.post("/storage/create-download", json={"key": "k"}, headers=bearer(key))

        assert response.status_code == 503
        assert response.json()["error"] == "storage_unavailable"
