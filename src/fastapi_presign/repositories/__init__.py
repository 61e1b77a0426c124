from .base import AbstractApiKeyRepository, AbstractFileObjectRepository, AbstractProjectRepository
from .in_memory import InMemoryApiKeyRepository, InMemoryFileObjectRepository, InMemoryProjectRepository

__all__ = [
    "AbstractApiKeyRepository",
    "AbstractFileObjectRepository",
    "AbstractProjectRepository",
    "InMemoryApiKeyRepository",
    "InMemoryFileObjectRepository",
    "InMemoryProjectRepository",
]
