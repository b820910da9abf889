"""
PreviewEnvironment service layer — all record reads/writes for the API.

Design principles:
  - Idempotent upsert: one record per (repo, PR); a new push to the PR only
    moves branch/commit/image, identity fields never change
  - One environment namespace per (author, PR): a second repo asking for a
    namespace another record already holds is refused
  - Goes through the same ObjectStore interface as the operator
  - Clean error handling: store errors surface as domain errors to the router
"""

import logging
from typing import Optional

from preview_operator.identity import derive_namespace
from preview_operator.models import ObjectMeta, PreviewEnvironment, PreviewEnvironmentSpec
from preview_operator.registry import ResourceRegistry, build_registry
from preview_operator.store import ConflictError, NotFoundError, ObjectStore

from ..config import settings
from ..models import PreviewResponse, PreviewUpsertRequest

logger = logging.getLogger("preview_service")

KIND = settings.CRD_KIND

_store: Optional[ObjectStore] = None


def build_api_registry() -> ResourceRegistry:
    return build_registry(settings.CRD_GROUP, settings.CRD_VERSION, settings.CRD_KIND, settings.CRD_PLURAL)


def get_store() -> ObjectStore:
    """Kubernetes-backed store, created on first use."""
    global _store
    if _store is None:
        from preview_operator.config import Settings as OperatorSettings
        from preview_operator.store.kubernetes import KubernetesObjectStore

        _store = KubernetesObjectStore(
            build_api_registry(),
            cfg=OperatorSettings(KUBECONFIG=settings.KUBECONFIG, IN_CLUSTER=settings.IN_CLUSTER),
        )
    return _store


def _load(item: dict) -> PreviewEnvironment:
    return PreviewEnvironment.from_object(item)


def _namespace_owner(store: ObjectStore, namespace: str, name: str) -> Optional[str]:
    """Name of another record whose environment lives in ``namespace``, if any."""
    for item in store.list(KIND):
        other = _load(item)
        if other.name == name:
            continue
        if (other.status.namespace or derive_namespace(other.spec)) == namespace:
            return other.name
    return None


def list_previews(store: ObjectStore, repo: Optional[str] = None,
                  user: Optional[str] = None) -> list[PreviewResponse]:
    """List PreviewEnvironments, optionally filtered by repository and/or author."""
    previews = [PreviewResponse.from_record(_load(item)) for item in store.list(KIND)]
    if repo:
        previews = [p for p in previews if p.repoName == repo]
    if user:
        previews = [p for p in previews if p.githubUsername == user]
    return previews


def get_preview(store: ObjectStore, name: str) -> Optional[PreviewResponse]:
    try:
        return PreviewResponse.from_record(_load(store.get(KIND, None, name)))
    except NotFoundError:
        return None


def upsert_preview(store: ObjectStore, req: PreviewUpsertRequest) -> tuple[PreviewResponse, bool]:
    """
    Create the PR's PreviewEnvironment, or roll an existing one to a new commit.
    Returns (preview, created). Raises ConflictError while the record is being
    deleted, or when another record already owns the namespace this PR would get.
    """
    name = req.record_name
    try:
        current = _load(store.get(KIND, None, name))
    except NotFoundError:
        current = None

    if current is None:
        spec = PreviewEnvironmentSpec(
            repo_name=req.repoName,
            pr_number=req.prNumber,
            branch=req.branch,
            commit_sha=req.commitSha,
            github_username=req.githubUsername,
            image_tag=req.imageTag,
            ttl=req.ttl,
        )
        namespace = derive_namespace(spec)
        owner = _namespace_owner(store, namespace, name)
        if owner:
            raise ConflictError(f"Namespace {namespace} is already used by PreviewEnvironment {owner}")

        record = PreviewEnvironment(
            api_version=f"{settings.CRD_GROUP}/{settings.CRD_VERSION}",
            kind=KIND,
            metadata=ObjectMeta(
                name=name,
                labels={
                    f"{settings.CRD_GROUP}/repo": req.repoName,
                    f"{settings.CRD_GROUP}/pr": str(req.prNumber),
                    f"{settings.CRD_GROUP}/user": req.githubUsername,
                },
            ),
            spec=spec,
        )
        body = record.to_object()
        body.pop("status", None)
        created = store.create(body)
        logger.info(f"PreviewEnvironment {name} created (commit={req.commitSha[:7]}, image={req.imageTag})")
        return PreviewResponse.from_record(_load(created)), True

    if current.deletion_requested:
        raise ConflictError(f"PreviewEnvironment {name} is being deleted")

    spec = current.spec
    if (spec.branch, spec.commit_sha, spec.image_tag) == (req.branch, req.commitSha, req.imageTag):
        logger.info(f"PreviewEnvironment {name} already at {req.commitSha[:7]}, unchanged (idempotent)")
        return PreviewResponse.from_record(current), False

    spec.branch = req.branch
    spec.commit_sha = req.commitSha
    spec.image_tag = req.imageTag
    updated = store.update(current.to_object())
    logger.info(f"PreviewEnvironment {name} moved to commit {req.commitSha[:7]} (image={req.imageTag})")
    return PreviewResponse.from_record(_load(updated)), False


def delete_preview(store: ObjectStore, name: str) -> bool:
    """Request deletion. Returns True if accepted, False if not found."""
    try:
        store.delete(KIND, None, name)
    except NotFoundError:
        return False
    logger.info(f"PreviewEnvironment {name} deletion initiated")
    return True


def count_previews_by_phase(store: ObjectStore) -> dict:
    counts = {"total": 0, "Pending": 0, "Creating": 0, "Ready": 0, "Expiring": 0, "Failed": 0}
    for preview in list_previews(store):
        counts["total"] += 1
        if preview.phase in counts:
            counts[preview.phase] += 1
    return counts
