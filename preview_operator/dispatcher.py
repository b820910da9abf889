"""
Dispatcher — identity-only delivery of reconcile requests.

Sits between the event source (kopf handlers) and the reconciler:
  - serializes passes per record name (never two at once for one record)
  - drains immediate requeues, bounded by MAX_IMMEDIATE_REQUEUES
  - remembers when each record next wants to run, for the requeue timer
"""
import logging
import threading
import time
from typing import Callable, Optional

from .reconciler import PreviewEnvironmentReconciler, ReconcileResult

logger = logging.getLogger("preview-operator.dispatcher")


class Dispatcher:
    def __init__(self, reconciler: PreviewEnvironmentReconciler, max_immediate_requeues: int = 5,
                 clock: Callable[[], float] = time.monotonic):
        self.reconciler = reconciler
        self.max_immediate_requeues = max_immediate_requeues
        self.clock = clock
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._due: dict[str, float] = {}

    def _lock_for(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def dispatch(self, name: str) -> ReconcileResult:
        """Run passes for ``name`` until it asks for anything but an immediate requeue."""
        with self._lock_for(name):
            passes = 0
            result = self.reconciler.reconcile(name)
            while result.requeue_now and passes < self.max_immediate_requeues:
                passes += 1
                result = self.reconciler.reconcile(name)
            if result.requeue_now:
                logger.warning(f"[{name}] still requeueing after {passes + 1} passes; deferring to timer")
            self._schedule(name, result)
            return result

    def _schedule(self, name: str, result: ReconcileResult):
        with self._guard:
            if result.requeue_after is None:
                self._due.pop(name, None)
            else:
                self._due[name] = self.clock() + result.requeue_after.total_seconds()

    def due_at(self, name: str) -> Optional[float]:
        with self._guard:
            return self._due.get(name)

    def is_due(self, name: str) -> bool:
        due = self.due_at(name)
        return due is not None and self.clock() >= due

    def forget(self, name: str):
        with self._guard:
            self._due.pop(name, None)
            self._locks.pop(name, None)
