import asyncio

from fastapi_presign import ApiKeyIssuer, KeyAuthenticator, ObjectAccessGrantor, ProjectResolver, StorageConfig
from fastapi_presign.repositories.in_memory import (
    InMemoryApiKeyRepository,
    InMemoryFileObjectRepository,
    InMemoryProjectRepository,
)
from fastapi_presign.storage.in_memory import InMemoryBlobStore

projects_repo = InMemoryProjectRepository()
keys_repo = InMemoryApiKeyRepository(projects=projects_repo)
blob_store = InMemoryBlobStore(bucket="media")

issuer = ApiKeyIssuer(repo=keys_repo, projects=ProjectResolver(projects_repo))
authenticator = KeyAuthenticator(repo=keys_repo, rrd=0)
grantor = ObjectAccessGrantor(
    objects=InMemoryFileObjectRepository(),
    blobs=blob_store,
    config=StorageConfig(bucket="media", public_base_url="https://cdn.example.com"),
)


async def main():
    entity, api_key = await issuer.issue(project_name="Demo", allowed_origins=["10.0.0.0/8"])
    print(f"Issued {entity.prefix}_{entity.public_id} for project {entity.project_id}")

    caller = await authenticator.authenticate(api_key, ["upload"], client_origin="10.1.2.3")
    grant = await grantor.issue_upload_grant(caller.project_id, mime="image/png", extension="png", is_public=False)
    print(f"PUT {grant.upload_url}")

    blob_store.put_object(grant.key, b"\x89PNG")
    confirmed = await grantor.confirm_upload(caller.project_id, grant.key)
    print(f"Confirmed {confirmed.key} ({confirmed.size} bytes)")

    download = await grantor.issue_download_grant(caller.project_id, grant.key, attachment_name="logo.png")
    print(f"GET {download.url}")

    await KeyAuthenticator.drain()


if __name__ == "__main__":
    asyncio.run(main())
