from .base import AbstractBlobStore, ObjectHead
from .in_memory import InMemoryBlobStore

__all__ = ["AbstractBlobStore", "ObjectHead", "InMemoryBlobStore"]
