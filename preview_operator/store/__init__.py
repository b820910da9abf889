from .base import ConflictError, NotFoundError, ObjectStore, StoreError, describe, object_key
from .memory import InMemoryObjectStore, StoreCall

__all__ = [
    "ConflictError",
    "InMemoryObjectStore",
    "NotFoundError",
    "ObjectStore",
    "StoreCall",
    "StoreError",
    "describe",
    "object_key",
]
