from typing import Optional

import structlog

from fastapi_presign.domain.entities import Project
from fastapi_presign.repositories.base import AbstractProjectRepository

logger = structlog.get_logger()

DEFAULT_PROJECT_NAME = "Untitled Project"


class ProjectResolver:
    """Resolve or create the project owning a key."""

    def __init__(self, repo: AbstractProjectRepository) -> None:
        self._repo = repo

    async def ensure(self, project_id: Optional[str] = None, name: Optional[str] = None) -> Project:
        """Make sure a project exists and return it.

        Args:
            project_id: Identifier to resolve. When given, the project is
                upserted: an existing row is returned unchanged, otherwise one
                is created with this identifier. When omitted, a new project
                with a generated identifier is always created.
            name: Name used if a project has to be created.

        Raises:
            PersistenceError: The store rejected the write.
        """
        if project_id:
            project = await self._repo.upsert(Project(id_=project_id, name=name or f"Project {project_id}"))
            logger.debug("project.ensured", project_id=project.id_)
            return project

        project = await self._repo.create(Project(name=name or DEFAULT_PROJECT_NAME))
        logger.info("project.created", project_id=project.id_)
        return project
