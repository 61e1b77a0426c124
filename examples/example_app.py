import os

from fastapi_presign.app import create_app
from fastapi_presign.config import Settings
from fastapi_presign.storage.in_memory import InMemoryBlobStore

# Local playground: signed URLs point at a fake host, objects never leave memory.
settings = Settings(
    database_url=os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./db.sqlite3"),
    s3_bucket="local-bucket",
    cdn_public_base="http://localhost:8000/cdn",
    allow_anonymous_upload=True,
)
blob_store = InMemoryBlobStore(bucket=settings.s3_bucket)

app = create_app(settings=settings, blob_store=blob_store)


@app.post("/dev/put/{key:path}", tags=["Dev"])
async def simulate_upload(key: str):
    """Pretend the client completed the signed PUT, so /storage/confirm succeeds."""
    blob_store.put_object(key, b"hello")
    return {"key": key}


if __name__ == "__main__":
    import uvicorn

    # Issue a first admin key with: presign-keys create --scopes admin
    uvicorn.run(app, host="localhost", port=8000)
