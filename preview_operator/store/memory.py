"""
In-memory object store.

Implements the same capability set as the Kubernetes backend, including the
API server behaviours the reconciler depends on:
  - resourceVersion checks on update / update_status (ConflictError)
  - finalizers turning delete into "set deletionTimestamp"
  - physical removal once the last finalizer is gone
  - cascade: namespace contents and owner-referenced dependents go too

Every call is recorded in ``calls`` and failures can be injected per
(verb, kind), which is what the test-suite drives the reconciler with.
"""
import copy
import itertools
import logging
import uuid
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, Callable, NamedTuple, Optional

from ..registry import ResourceRegistry
from .base import ConflictError, NotFoundError, StoreError, describe, object_key

logger = logging.getLogger("preview-operator.store")


class StoreCall(NamedTuple):
    verb: str
    kind: str
    namespace: Optional[str]
    name: str


def _timestamp(clock: Callable[[], datetime]) -> str:
    return clock().strftime("%Y-%m-%dT%H:%M:%SZ")


class InMemoryObjectStore:
    def __init__(self, registry: ResourceRegistry,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.registry = registry
        self.clock = clock
        self.calls: list[StoreCall] = []
        self._objects: dict[tuple[str, Optional[str], str], dict[str, Any]] = {}
        self._versions = itertools.count(1)
        self._failures: dict[tuple[str, str], deque] = defaultdict(deque)

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def inject_failure(self, verb: str, kind: str, error: StoreError, times: int = 1):
        """Make the next ``times`` calls of ``verb`` on ``kind`` raise ``error``."""
        self._failures[(verb, kind)].extend([error] * times)

    def count(self, verb: str, kind: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if c.verb == verb and (kind is None or c.kind == kind))

    def reset_calls(self):
        self.calls.clear()

    def contains(self, kind: str, namespace: Optional[str], name: str) -> bool:
        return self._key(kind, namespace, name) in self._objects

    # ------------------------------------------------------------------
    # ObjectStore
    # ------------------------------------------------------------------

    def get(self, kind: str, namespace: Optional[str], name: str) -> dict[str, Any]:
        self._record("get", kind, namespace, name)
        return copy.deepcopy(self._require(kind, namespace, name))

    def list(self, kind: str, namespace: Optional[str] = None) -> list[dict[str, Any]]:
        self.registry.get(kind)
        return [
            copy.deepcopy(obj) for (k, ns, _), obj in sorted(self._objects.items(), key=lambda i: str(i[0]))
            if k == kind and (namespace is None or ns == namespace)
        ]

    def create(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        self._record("create", kind, namespace, name)
        key = self._key(kind, namespace, name)
        if key in self._objects:
            raise ConflictError(f"{describe(*key)} already exists")
        if key[1] is not None and not self.contains("Namespace", None, key[1]):
            raise NotFoundError(f"namespace {key[1]} not found")

        stored = copy.deepcopy(obj)
        meta = stored.setdefault("metadata", {})
        meta["uid"] = str(uuid.uuid4())
        meta["resourceVersion"] = self._next_version()
        meta["creationTimestamp"] = _timestamp(self.clock)
        meta.pop("deletionTimestamp", None)
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        self._record("update", kind, namespace, name)
        current = self._require(kind, namespace, name)
        self._check_version(current, obj)

        stored = copy.deepcopy(obj)
        meta = stored["metadata"]
        # Server-owned fields are not writable through update.
        for field in ("uid", "creationTimestamp", "deletionTimestamp"):
            if field in current["metadata"]:
                meta[field] = current["metadata"][field]
            else:
                meta.pop(field, None)
        if "status" in current:
            stored["status"] = current["status"]
        else:
            stored.pop("status", None)
        meta["resourceVersion"] = self._next_version()
        key = self._key(kind, namespace, name)
        self._objects[key] = stored

        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            self._remove(key)
        return copy.deepcopy(stored)

    def update_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        kind, namespace, name = object_key(obj)
        self._record("update_status", kind, namespace, name)
        current = self._require(kind, namespace, name)
        self._check_version(current, obj)
        current["status"] = copy.deepcopy(obj.get("status", {}))
        current["metadata"]["resourceVersion"] = self._next_version()
        return copy.deepcopy(current)

    def delete(self, kind: str, namespace: Optional[str], name: str) -> None:
        self._record("delete", kind, namespace, name)
        self._require(kind, namespace, name)
        self._delete_key(self._key(kind, namespace, name))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _record(self, verb: str, kind: str, namespace: Optional[str], name: str):
        self.calls.append(StoreCall(verb, kind, namespace, name))
        pending = self._failures.get((verb, kind))
        if pending:
            raise pending.popleft()

    def _key(self, kind: str, namespace: Optional[str], name: str):
        resource_type = self.registry.get(kind)
        return kind, namespace if resource_type.namespaced else None, name

    def _require(self, kind: str, namespace: Optional[str], name: str) -> dict[str, Any]:
        key = self._key(kind, namespace, name)
        try:
            return self._objects[key]
        except KeyError:
            raise NotFoundError(f"{describe(*key)} not found") from None

    def _next_version(self) -> str:
        return str(next(self._versions))

    @staticmethod
    def _check_version(current: dict[str, Any], incoming: dict[str, Any]):
        wanted = incoming.get("metadata", {}).get("resourceVersion")
        actual = current["metadata"]["resourceVersion"]
        if wanted is not None and wanted != actual:
            raise ConflictError(
                f"resourceVersion {wanted} is stale (current {actual}) for {describe(*object_key(current))}"
            )

    def _delete_key(self, key):
        obj = self._objects.get(key)
        if obj is None:
            return
        meta = obj["metadata"]
        if meta.get("finalizers"):
            if not meta.get("deletionTimestamp"):
                meta["deletionTimestamp"] = _timestamp(self.clock)
                meta["resourceVersion"] = self._next_version()
            return
        self._remove(key)

    def _remove(self, key):
        obj = self._objects.pop(key, None)
        if obj is None:
            return
        logger.debug(f"Removed {describe(*key)}")
        kind, _, name = key
        dependents = []
        if kind == "Namespace":
            dependents += [k for k in self._objects if k[1] == name]
        uid = obj["metadata"].get("uid")
        dependents += [
            k for k, o in self._objects.items()
            if any(ref.get("uid") == uid for ref in o["metadata"].get("ownerReferences", []))
        ]
        for dependent in dependents:
            self._delete_key(dependent)
