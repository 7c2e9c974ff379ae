"""
Configuration module: all settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"

    # CRD
    CRD_GROUP: str = "mirrors.kts.studio"
    CRD_VERSION: str = "v1alpha2"
    CRD_PLURAL: str = "secretmirrors"
    ANNOTATION_PREFIX: str = "mirrors.kts.studio"
    FINALIZER: str = "mirrors.kts.studio/finalizer"
    # kopf keeps its own finalizer for daemons; it must differ from ours
    KOPF_FINALIZER: str = "mirrors.kts.studio/kopf-finalizer"

    # Reconciliation
    DEFAULT_POLL_PERIOD_SECONDS: int = int(os.environ.get("DEFAULT_POLL_PERIOD_SECONDS", "180"))
    DEFAULT_REQUEUE_AFTER: float = float(os.environ.get("DEFAULT_REQUEUE_AFTER", "15"))
    SOURCE_MISSING_REQUEUE_AFTER: float = float(os.environ.get("SOURCE_MISSING_REQUEUE_AFTER", "30"))
    NAMESPACE_LIST_BACKOFF: float = float(os.environ.get("NAMESPACE_LIST_BACKOFF", "3"))

    # Concurrency
    WORKER_POOL_SIZE: int = int(os.environ.get("WORKER_POOL_SIZE", "100"))
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "20"))

    # Vault
    VAULT_TIMEOUT: int = int(os.environ.get("VAULT_TIMEOUT", "30"))

    # Event stream (optional)
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    # Health / metrics API
    API_ENABLED: bool = os.environ.get("API_ENABLED", "true").lower() == "true"
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))

    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
