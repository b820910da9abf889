"""
Object store capability interface.

The reconciler only talks to the cluster through this protocol: objects are
plain manifest dicts addressed by (kind, namespace, name). Cluster-scoped
kinds use ``namespace=None``.
"""
from typing import Any, Optional, Protocol


class StoreError(Exception):
    """Any failure talking to the object store."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    def __init__(self, message: str):
        super().__init__(message, status=404)


class ConflictError(StoreError):
    """Optimistic-concurrency failure (stale resourceVersion) or name clash."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class ObjectStore(Protocol):
    def get(self, kind: str, namespace: Optional[str], name: str) -> dict[str, Any]:
        """Return the object or raise NotFoundError."""
        ...

    def list(self, kind: str, namespace: Optional[str] = None) -> list[dict[str, Any]]:
        ...

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        ...

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace spec/metadata. Raises ConflictError on a stale resourceVersion."""
        ...

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the status subresource only."""
        ...

    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        """Request deletion. Cascades to owned objects and namespace contents."""
        ...


def object_key(obj: dict[str, Any]) -> tuple[str, Optional[str], str]:
    meta = obj.get("metadata", {})
    return obj["kind"], meta.get("namespace"), meta["name"]


def describe(kind: str, namespace: Optional[str], name: str) -> str:
    return f"{kind} {namespace}/{name}" if namespace else f"{kind} {name}"
