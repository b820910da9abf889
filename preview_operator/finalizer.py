"""
Finalizer protocol.

The operator's token on a PreviewEnvironment blocks the API server from
removing it. The token is only taken off after the environment's namespace is
gone (deleted now, or found already absent); deleting the namespace takes the
Deployment, Service and Ingress with it.
"""
import logging

from .identity import derive_namespace
from .models import PreviewEnvironment
from .store import NotFoundError, ObjectStore

logger = logging.getLogger("preview-operator.finalizer")


class FinalizerProtocol:
    def __init__(self, store: ObjectStore, token: str):
        self.store = store
        self.token = token

    def attach(self, record: PreviewEnvironment):
        """Add the token and persist the record. StoreError propagates."""
        record.metadata.finalizers.append(self.token)
        self.store.update(record.to_object())
        logger.info(f"[{record.name}] finalizer {self.token} added")

    def cleanup_namespace(self, record: PreviewEnvironment) -> str:
        """Delete the record's namespace; an already-absent one counts as cleaned."""
        namespace = record.status.namespace or derive_namespace(record.spec)
        try:
            self.store.delete("Namespace", None, namespace)
            logger.info(f"[{record.name}] namespace {namespace} deletion initiated")
        except NotFoundError:
            logger.info(f"[{record.name}] namespace {namespace} already gone")
        return namespace

    def release(self, record: PreviewEnvironment):
        """Drop the token so the store can remove the record. StoreError propagates."""
        record.metadata.finalizers = [f for f in record.metadata.finalizers if f != self.token]
        self.store.update(record.to_object())
        logger.info(f"[{record.name}] finalizer {self.token} removed")

    def finalize(self, record: PreviewEnvironment) -> str:
        """Cleanup, then release. The token stays if cleanup raises."""
        namespace = self.cleanup_namespace(record)
        self.release(record)
        return namespace
