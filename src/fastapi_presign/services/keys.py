from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from fastapi_presign.domain.codec import DEFAULT_PREFIX, KeyCodec
from fastapi_presign.domain.entities import ApiKey
from fastapi_presign.domain.errors import BadInput, Conflict, DuplicateEntry, MissingReference, NotFound
from fastapi_presign.domain.network import is_valid_rule
from fastapi_presign.domain.scopes import Scope, normalize_scopes
from fastapi_presign.repositories.base import AbstractApiKeyRepository
from fastapi_presign.services.projects import ProjectResolver

logger = structlog.get_logger()

DEFAULT_SCOPES: Tuple[str, ...] = (Scope.UPLOAD.value, Scope.DOWNLOAD.value)


class ApiKeyIssuer:
    """Issue API keys and toggle their activation.

    Args:
        repo: API key repository.
        projects: Resolver used to make sure the owning project exists.
        codec: Key codec. Must hash the same way as the authenticator.
    """

    def __init__(
        self,
        repo: AbstractApiKeyRepository,
        projects: ProjectResolver,
        codec: Optional[KeyCodec] = None,
    ) -> None:
        self._repo = repo
        self._projects = projects
        self._codec = codec or KeyCodec()

    async def issue(
        self,
        project_id: Optional[str] = None,
        project_name: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
        prefix: str = DEFAULT_PREFIX,
        allowed_origins: Optional[Sequence[str]] = None,
        is_active: bool = True,
    ) -> Tuple[ApiKey, str]:
        """Create and persist a new API key.

        Notes:
            The returned plaintext is the only time the key is available;
            only its hash is stored.

        Returns:
            A tuple of the stored entity and the full plaintext key.

        Raises:
            BadInput: Unknown prefix, malformed origin rule or missing project.
            Conflict: The generated hash already exists.
        """
        if prefix not in self._codec.prefixes:
            raise BadInput(f"Unknown key prefix '{prefix}'")

        origins = [rule.strip() for rule in allowed_origins or [] if rule and rule.strip()]
        invalid = [rule for rule in origins if not is_valid_rule(rule)]
        if invalid:
            raise BadInput(f"Invalid origin rules: {', '.join(invalid)}")

        resolved_scopes = list(normalize_scopes(list(scopes) if scopes is not None else list(DEFAULT_SCOPES)))

        project = await self._projects.ensure(project_id=project_id, name=project_name)
        generated = self._codec.generate(prefix)

        entity = ApiKey(
            key_hash=generated.key_hash,
            public_id=generated.public_id,
            prefix=generated.prefix,
            project_id=project.id_,
            scopes=resolved_scopes,
            allowed_origins=origins,
            is_active=is_active,
        )

        try:
            entity = await self._repo.create(entity)
        except MissingReference as exc:
            raise BadInput("Invalid projectId (foreign key)") from exc
        except DuplicateEntry as exc:
            raise Conflict("Duplicate API key hash") from exc

        logger.info(
            "api_key.issued",
            public_id=entity.public_id,
            project_id=entity.project_id,
            scopes=entity.scopes,
        )
        return entity, generated.key

    async def get(self, id_: str) -> ApiKey:
        if not id_.strip():
            raise BadInput("No API key ID provided")

        entity = await self._repo.get_by_id(id_)
        if entity is None:
            raise NotFound(f"API key with ID '{id_}' not found")

        return entity

    async def list(self, limit: int = 100, offset: int = 0) -> List[ApiKey]:
        return await self._repo.list(limit=limit, offset=offset)

    async def activate(self, id_: str) -> ApiKey:
        entity = await self.get(id_)
        if entity.is_active:
            return entity

        entity.enable()
        return await self._save(entity)

    async def deactivate(self, id_: str) -> ApiKey:
        entity = await self.get(id_)
        if not entity.is_active:
            return entity

        entity.disable()
        entity = await self._save(entity)
        logger.info("api_key.deactivated", public_id=entity.public_id)
        return entity

    async def _save(self, entity: ApiKey) -> ApiKey:
        result = await self._repo.update(entity)
        if result is None:
            raise NotFound(f"API key with ID '{entity.id_}' not found")
        return result
