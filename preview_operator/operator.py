"""
Preview Operator — Kubernetes Operator for TTL-bounded PR preview environments

Architecture:
  PreviewEnvironment CRD → kopf watches → Dispatcher → Reconciler pass:
    1. Finalizer token        (preview.homecareapp.xyz/finalizer)
    2. Identity + expiry      (namespace preview<user>-pr<N>, URL, TTL)
    3. Converge children      Namespace → Deployment → Service → Ingress
    4. Status                 Creating → Ready / Failed

  On Delete (deletion marker set):
    1. Delete namespace  (cascading cleanup of every child)
    2. Remove the operator's finalizer token

  On TTL expiry:
    Expiring → delete the PreviewEnvironment → delete path above

  Requeue Timer:
    - Every REQUEUE_TICK_SECONDS, re-runs records whose requested delay elapsed
    - Regular delay: 1h (or time left before expiry); after failures: 5m

  Concurrency Control:
    - Max MAX_PARALLEL_RECONCILES workers across records
    - Passes for one record are serialized by the Dispatcher

Run with:  kopf run -m preview_operator.operator --all-namespaces
"""

import logging

import kopf
from prometheus_client import start_http_server

from .config import settings as cfg
from .dispatcher import Dispatcher
from .events import EventPublisher
from .reconciler import PreviewEnvironmentReconciler, ReconcileResult
from .registry import build_registry
from .store.kubernetes import KubernetesObjectStore

logger = logging.getLogger("preview-operator")

CRD_GROUP = cfg.CRD_GROUP
CRD_VERSION = cfg.CRD_VERSION
CRD_PLURAL = cfg.CRD_PLURAL


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    settings.posting.enabled = True
    # kopf's own marker for its delete handler; the reconciler manages cfg.FINALIZER itself.
    settings.persistence.finalizer = f"{cfg.CRD_GROUP}/kopf-finalizer"
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=cfg.CRD_GROUP)
    settings.execution.max_workers = cfg.MAX_PARALLEL_RECONCILES

    registry = build_registry(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.CRD_KIND, cfg.CRD_PLURAL)
    store = KubernetesObjectStore(registry, cfg=cfg)
    reconciler = PreviewEnvironmentReconciler(store, registry, cfg, events=EventPublisher(cfg.REDIS_URL))
    memo.dispatcher = Dispatcher(reconciler, max_immediate_requeues=cfg.MAX_IMMEDIATE_REQUEUES)

    start_http_server(cfg.METRICS_PORT)
    logger.info(
        f"Preview Operator started (max_workers={cfg.MAX_PARALLEL_RECONCILES}, "
        f"domain={cfg.DOMAIN_SUFFIX}, metrics=:{cfg.METRICS_PORT})"
    )


def _raise_for_retry(name: str, result: ReconcileResult):
    """Hand a failed pass back to kopf so it retries after the requested delay."""
    if result.error is None:
        return
    delay = result.requeue_after.total_seconds() if result.requeue_after else cfg.RETRY_INTERVAL_SECONDS
    raise kopf.TemporaryError(f"Reconcile of {name} failed: {result.error}", delay=delay)


# ---------------------------------------------------------------------------
# CREATE / UPDATE / RESUME — deliver the record's identity to the reconciler
# ---------------------------------------------------------------------------

@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def reconcile_preview(name, memo: kopf.Memo, logger, **kwargs):
    result = memo.dispatcher.dispatch(name)
    logger.info(f"PreviewEnvironment {name} reconciled (requeue_after={result.requeue_after})")
    _raise_for_retry(name, result)


# ---------------------------------------------------------------------------
# TIMER — honours the requeue delay the reconciler asked for
# ---------------------------------------------------------------------------

@kopf.timer(CRD_GROUP, CRD_VERSION, CRD_PLURAL, interval=cfg.REQUEUE_TICK_SECONDS)
def requeue_preview(name, memo: kopf.Memo, logger, **kwargs):
    if not memo.dispatcher.is_due(name):
        return
    result = memo.dispatcher.dispatch(name)
    if result.error is not None:
        # Already rescheduled with the retry delay by the dispatcher.
        logger.warning(f"PreviewEnvironment {name} requeue pass failed: {result.error}")


# ---------------------------------------------------------------------------
# DELETE — finalizer protocol, retried until cleanup succeeds
# ---------------------------------------------------------------------------

@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def finalize_preview(name, memo: kopf.Memo, logger, **kwargs):
    result = memo.dispatcher.dispatch(name)
    _raise_for_retry(name, result)
    memo.dispatcher.forget(name)
    logger.info(f"PreviewEnvironment {name} cleanup complete")
