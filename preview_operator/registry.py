"""
Kind registry — the resource types the operator reads and writes.

Built once at startup and handed to the store and the reconciler, so nothing
looks a kind up through process-wide state.
"""
from dataclasses import dataclass
from typing import Any


class UnknownKindError(KeyError):
    """Raised when a kind was never registered."""


@dataclass(frozen=True)
class ResourceType:
    kind: str
    api_version: str
    plural: str
    namespaced: bool

    @property
    def group(self) -> str:
        return self.api_version.rpartition("/")[0]

    @property
    def version(self) -> str:
        return self.api_version.rpartition("/")[2]


class ResourceRegistry:
    def __init__(self):
        self._types: dict[str, ResourceType] = {}

    def register(self, resource_type: ResourceType) -> ResourceType:
        self._types[resource_type.kind] = resource_type
        return resource_type

    def get(self, kind: str) -> ResourceType:
        try:
            return self._types[kind]
        except KeyError:
            raise UnknownKindError(f"Kind '{kind}' is not registered") from None

    def __contains__(self, kind: str) -> bool:
        return kind in self._types

    def kinds(self) -> list[str]:
        return list(self._types)

    def owner_reference(self, owner: dict[str, Any]) -> dict[str, Any]:
        """Controller owner reference pointing at ``owner`` (a manifest dict)."""
        resource_type = self.get(owner["kind"])
        meta = owner["metadata"]
        return {
            "apiVersion": resource_type.api_version,
            "kind": resource_type.kind,
            "name": meta["name"],
            "uid": meta["uid"],
            "controller": True,
            "blockOwnerDeletion": True,
        }


def build_registry(group: str, version: str, kind: str, plural: str) -> ResourceRegistry:
    """Registry with the built-in child kinds plus the PreviewEnvironment CRD."""
    registry = ResourceRegistry()
    registry.register(ResourceType("Namespace", "v1", "namespaces", namespaced=False))
    registry.register(ResourceType("Deployment", "apps/v1", "deployments", namespaced=True))
    registry.register(ResourceType("Service", "v1", "services", namespaced=True))
    registry.register(ResourceType("Ingress", "networking.k8s.io/v1", "ingresses", namespaced=True))
    registry.register(ResourceType(kind, f"{group}/{version}", plural, namespaced=False))
    return registry
