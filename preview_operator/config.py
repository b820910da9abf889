"""
Configuration module — all operator settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # CRD
    CRD_GROUP: str = "preview.homecareapp.xyz"
    CRD_VERSION: str = "v1"
    CRD_PLURAL: str = "previewenvironments"
    CRD_KIND: str = "PreviewEnvironment"
    FINALIZER: str = os.environ.get("FINALIZER", "preview.homecareapp.xyz/finalizer")

    # Preview environments
    DOMAIN_SUFFIX: str = os.environ.get("DOMAIN_SUFFIX", "dev.homecareapp.xyz")
    INGRESS_CLASS: str = os.environ.get("INGRESS_CLASS", "nginx")
    APP_PORT: int = int(os.environ.get("APP_PORT", "3000"))
    DEFAULT_TTL_HOURS: int = 24

    # Requeue policy
    REQUEUE_INTERVAL_SECONDS: int = int(os.environ.get("REQUEUE_INTERVAL_SECONDS", "3600"))
    RETRY_INTERVAL_SECONDS: int = int(os.environ.get("RETRY_INTERVAL_SECONDS", "300"))
    REQUEUE_TICK_SECONDS: int = int(os.environ.get("REQUEUE_TICK_SECONDS", "30"))
    MAX_IMMEDIATE_REQUEUES: int = int(os.environ.get("MAX_IMMEDIATE_REQUEUES", "5"))

    # Operator process
    MAX_PARALLEL_RECONCILES: int = int(os.environ.get("MAX_PARALLEL_RECONCILES", "4"))
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "9090"))
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    @property
    def requeue_interval(self) -> timedelta:
        return timedelta(seconds=self.REQUEUE_INTERVAL_SECONDS)

    @property
    def retry_interval(self) -> timedelta:
        return timedelta(seconds=self.RETRY_INTERVAL_SECONDS)


settings = Settings()
