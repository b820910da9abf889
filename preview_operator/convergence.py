"""
Convergence driver — create-or-update for the four child resources.

Children are processed in a fixed order (Namespace, Deployment, Service,
Ingress). For each one:
  1. build the target manifest
  2. read the current object
  3. absent  → create it with a controller owner reference to the parent
  4. present → re-sync only the tracked fields (the Deployment image)
  5. otherwise no-op
The first failing store call aborts the pass; later children are left for the
next pass. Re-running is always safe.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from . import builders
from .builders import BuildOptions
from .models import PreviewEnvironment
from .registry import ResourceRegistry
from .store import NotFoundError, ObjectStore, StoreError, describe

logger = logging.getLogger("preview-operator.convergence")

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ChildResource:
    kind: str
    build: Callable[..., dict[str, Any]]
    # Mutates the current object toward the target; returns True if it changed.
    sync: Optional[Callable[[dict[str, Any], dict[str, Any]], bool]] = None


CHILD_RESOURCES = (
    ChildResource("Namespace", builders.build_namespace),
    ChildResource("Deployment", builders.build_deployment, sync=builders.sync_container_image),
    ChildResource("Service", builders.build_service),
    ChildResource("Ingress", builders.build_ingress),
)


@dataclass(frozen=True)
class ChildAction:
    kind: str
    name: str
    action: str


@dataclass
class ConvergenceReport:
    actions: list[ChildAction] = field(default_factory=list)

    @property
    def changed(self) -> list[ChildAction]:
        return [a for a in self.actions if a.action != UNCHANGED]


class ConvergenceError(Exception):
    """A child resource could not be read, created or updated."""

    def __init__(self, kind: str, name: str, cause: StoreError, report: ConvergenceReport):
        super().__init__(f"{kind} {name}: {cause}")
        self.kind = kind
        self.name = name
        self.cause = cause
        self.report = report


class ConvergenceDriver:
    def __init__(self, store: ObjectStore, registry: ResourceRegistry, options: BuildOptions,
                 children=CHILD_RESOURCES):
        self.store = store
        self.registry = registry
        self.options = options
        self.children = children

    def converge(self, record: PreviewEnvironment, namespace: str, hostname: str) -> ConvergenceReport:
        """Bring every child to its target. Raises ConvergenceError on the first failure."""
        report = ConvergenceReport()
        owner_ref = self.registry.owner_reference(record.to_object())
        for child in self.children:
            target = child.build(record.spec, namespace, hostname, self.options)
            meta = target["metadata"]
            try:
                action = self._converge_one(child, target, owner_ref)
            except StoreError as e:
                logger.error(f"[{record.name}] {describe(child.kind, meta.get('namespace'), meta['name'])}: {e}")
                raise ConvergenceError(child.kind, meta["name"], e, report) from e
            report.actions.append(ChildAction(child.kind, meta["name"], action))
        return report

    def _converge_one(self, child: ChildResource, target: dict[str, Any], owner_ref: dict[str, Any]) -> str:
        meta = target["metadata"]
        try:
            current = self.store.get(child.kind, meta.get("namespace"), meta["name"])
        except NotFoundError:
            meta["ownerReferences"] = [owner_ref]
            self.store.create(target)
            logger.info(f"{describe(child.kind, meta.get('namespace'), meta['name'])} created")
            return CREATED

        if child.sync is not None and child.sync(current, target):
            self.store.update(current)
            logger.info(f"{describe(child.kind, meta.get('namespace'), meta['name'])} updated")
            return UPDATED
        return UNCHANGED
