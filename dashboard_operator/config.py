"""
Configuration module — operator settings from env vars with sensible defaults.
Follows 12-factor app methodology.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"
    # Empty = watch every namespace
    WATCH_NAMESPACE: str = os.environ.get("WATCH_NAMESPACE", "")
    # Server-side timeout of each kopf watch request
    WATCH_TIMEOUT: int = int(os.environ.get("WATCH_TIMEOUT", "300"))

    # CRD
    CRD_GROUP: str = "custom.instana.io"
    CRD_VERSION: str = "v1"
    CRD_PLURAL: str = "dashboards"
    CRD_KIND: str = "Dashboard"
    FINALIZER: str = "dashboard.custom.instana.io/finalizer"
    # kopf's own deletion marker, separate from FINALIZER so the latter keeps
    # meaning "a remote dashboard may exist"
    HANDLER_FINALIZER: str = "dashboard.custom.instana.io/kopf-finalizer"

    # Remote dashboard API credentials (ConfigMap, env as fallback)
    API_CONFIG_NAMESPACE: str = os.environ.get("API_CONFIG_NAMESPACE", "default")
    API_CONFIG_NAME: str = os.environ.get("API_CONFIG_NAME", "instana-custom-dashboard-config")
    API_TOKEN_KEY: str = "instana-api-token"
    API_BASE_URL_KEY: str = "instana-base-url"
    INSTANA_BASE_URL: str = os.environ.get("INSTANA_BASE_URL", "")
    INSTANA_API_TOKEN: str = os.environ.get("INSTANA_API_TOKEN", "")

    # Reconcile
    MAX_PARALLEL_RECONCILES: int = int(os.environ.get("MAX_PARALLEL_RECONCILES", "3"))
    RECONCILE_TIMEOUT: float = float(os.environ.get("RECONCILE_TIMEOUT", "60"))
    CALL_TIMEOUT: float = float(os.environ.get("CALL_TIMEOUT", "10"))
    STATUS_WRITE_ATTEMPTS: int = int(os.environ.get("STATUS_WRITE_ATTEMPTS", "3"))
    RETRY_BASE_DELAY: float = float(os.environ.get("RETRY_BASE_DELAY", "1"))
    RETRY_MAX_DELAY: float = float(os.environ.get("RETRY_MAX_DELAY", "300"))

    # Observability
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    METRICS_PORT: int = int(os.environ.get("METRICS_PORT", "8000"))
    REDIS_URL: str = os.environ.get("REDIS_URL", "")


settings = Settings()
