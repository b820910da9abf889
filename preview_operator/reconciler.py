"""
Reconcile entry point for PreviewEnvironment records.

One call = one pass = at most one state transition, evaluated in this order:

  1. record gone                       → nothing to do
  2. deletion requested                → finalizer protocol only
  3. finalizer token missing           → add it, requeue immediately
  4. TTL elapsed                       → Expiring, delete the record
  5. status not initialized            → identity + Creating, requeue immediately
  6. otherwise                         → converge children, Creating/Failed → Ready

Store failures never escape: they come back in ``ReconcileResult.error``
together with the retry delay, and the dispatcher redelivers.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from . import lifecycle
from .builders import BuildOptions
from .config import Settings, settings as default_settings
from .convergence import CREATED, UPDATED, ConvergenceDriver, ConvergenceError
from .events import EventPublisher
from .finalizer import FinalizerProtocol
from .identity import hostname_from_url
from .metrics import CHILD_ACTIONS, PHASE_TRANSITIONS, RECONCILE_DURATION, RECONCILE_TOTAL
from .models import Phase, PreviewEnvironment
from .registry import ResourceRegistry
from .store import NotFoundError, ObjectStore, StoreError

logger = logging.getLogger("preview-operator")

IMMEDIATELY = timedelta(0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ReconcileResult:
    # None: wait for the next watch event. timedelta(0): run again right away.
    requeue_after: Optional[timedelta] = None
    error: Optional[Exception] = None

    @property
    def requeue_now(self) -> bool:
        return self.requeue_after == IMMEDIATELY


class PreviewEnvironmentReconciler:
    def __init__(self, store: ObjectStore, registry: ResourceRegistry,
                 cfg: Settings = default_settings,
                 clock: Callable[[], datetime] = utcnow,
                 events: Optional[EventPublisher] = None):
        self.store = store
        self.registry = registry
        self.cfg = cfg
        self.clock = clock
        self.events = events or EventPublisher(cfg.REDIS_URL)
        self.kind = cfg.CRD_KIND
        self.finalizer = FinalizerProtocol(store, cfg.FINALIZER)
        self.driver = ConvergenceDriver(
            store, registry,
            BuildOptions(app_port=cfg.APP_PORT, ingress_class=cfg.INGRESS_CLASS),
        )

    def reconcile(self, name: str) -> ReconcileResult:
        with RECONCILE_DURATION.time():
            result = self._reconcile(name)
        RECONCILE_TOTAL.labels(outcome="error" if result.error else "success").inc()
        return result

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        # Status timestamps carry second precision on the wire.
        return self.clock().replace(microsecond=0)

    def _retry(self, error: Exception) -> ReconcileResult:
        return ReconcileResult(requeue_after=self.cfg.retry_interval, error=error)

    def _reconcile(self, name: str) -> ReconcileResult:
        try:
            record = PreviewEnvironment.from_object(self.store.get(self.kind, None, name))
        except NotFoundError:
            logger.debug(f"{self.kind} {name} not found, already deleted")
            return ReconcileResult()
        except StoreError as e:
            logger.error(f"Failed to get {self.kind} {name}: {e}")
            return self._retry(e)

        if record.deletion_requested:
            return self._finalize(record)

        if not record.has_finalizer(self.finalizer.token):
            try:
                self.finalizer.attach(record)
            except StoreError as e:
                logger.warning(f"[{name}] could not add finalizer: {e}")
                return self._retry(e)
            return ReconcileResult(requeue_after=IMMEDIATELY)

        now = self._now()
        if lifecycle.is_expired(record.status, now):
            return self._expire(record, now)
        if not record.status.initialized:
            return self._initialize(record, now)
        return self._converge(record, now)

    def _initialize(self, record: PreviewEnvironment, now: datetime) -> ReconcileResult:
        previous = record.status.phase
        lifecycle.initialize(record, now, self.cfg.DOMAIN_SUFFIX, self.cfg.DEFAULT_TTL_HOURS)
        try:
            self._write_status(record, previous)
        except StoreError as e:
            logger.error(f"[{record.name}] failed to initialize status: {e}")
            return self._retry(e)
        status = record.status
        logger.info(
            f"[{record.name}] identity assigned: namespace={status.namespace} "
            f"url={status.environment_url} expires={status.expires_at:%Y-%m-%dT%H:%M:%SZ}"
        )
        self.events.publish(record.name, "IDENTITY_ASSIGNED",
                            f"Namespace {status.namespace}, URL {status.environment_url}",
                            status.phase.value)
        return ReconcileResult(requeue_after=IMMEDIATELY)

    def _converge(self, record: PreviewEnvironment, now: datetime) -> ReconcileResult:
        status = record.status
        previous = status.phase
        try:
            report = self.driver.converge(record, status.namespace, hostname_from_url(status.environment_url))
        except ConvergenceError as e:
            self._publish_actions(record, e.report)
            lifecycle.mark_failed(record, e, now)
            try:
                self._write_status(record, previous)
            except StoreError as status_err:
                logger.error(f"[{record.name}] failed to update status to Failed: {status_err}")
            self.events.publish(record.name, "RECONCILE_FAILED", str(e)[:200], Phase.FAILED.value)
            return self._retry(e)

        self._publish_actions(record, report)
        if lifecycle.mark_ready(record, now):
            try:
                self._write_status(record, previous)
            except StoreError as e:
                logger.warning(f"[{record.name}] failed to update status to Ready: {e}")
                return self._retry(e)
            logger.info(f"[{record.name}] ✓ ready at {status.environment_url}")
            self.events.publish(record.name, "ENVIRONMENT_READY",
                                f"Ready at {status.environment_url}", Phase.READY.value)
        return ReconcileResult(requeue_after=lifecycle.next_requeue(status, now, self.cfg.requeue_interval))

    def _expire(self, record: PreviewEnvironment, now: datetime) -> ReconcileResult:
        logger.info(f"[{record.name}] expired, marking for deletion (namespace={record.status.namespace})")
        previous = record.status.phase
        lifecycle.mark_expiring(record, now)
        try:
            self._write_status(record, previous)
            self.store.delete(self.kind, None, record.name)
        except NotFoundError:
            return ReconcileResult()
        except StoreError as e:
            logger.error(f"[{record.name}] failed to expire: {e}")
            return self._retry(e)
        self.events.publish(record.name, "ENVIRONMENT_EXPIRED", lifecycle.MESSAGE_EXPIRED,
                            Phase.EXPIRING.value)
        return ReconcileResult()

    def _finalize(self, record: PreviewEnvironment) -> ReconcileResult:
        if not record.has_finalizer(self.finalizer.token):
            return ReconcileResult()
        try:
            namespace = self.finalizer.finalize(record)
        except StoreError as e:
            logger.error(f"[{record.name}] failed to clean up preview environment: {e}")
            self.events.publish(record.name, "CLEANUP_FAILED", str(e)[:200], record.status.phase.value)
            return self._retry(e)
        logger.info(f"[{record.name}] cleanup complete (namespace {namespace})")
        self.events.publish(record.name, "CLEANUP_COMPLETE", f"Namespace {namespace} deleted",
                            record.status.phase.value)
        self.events.discard(record.name)
        return ReconcileResult()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_status(self, record: PreviewEnvironment, previous: Phase):
        self.store.update_status(record.to_object())
        if record.status.phase != previous:
            PHASE_TRANSITIONS.labels(phase=record.status.phase.value).inc()

    def _publish_actions(self, record: PreviewEnvironment, report):
        for action in report.changed:
            CHILD_ACTIONS.labels(kind=action.kind, action=action.action).inc()
            event_type = {CREATED: "CHILD_CREATED", UPDATED: "CHILD_UPDATED"}[action.action]
            self.events.publish(record.name, event_type, f"{action.kind} {action.name} {action.action}",
                                record.status.phase.value)
