"""
Configuration module — all settings from env vars with sensible defaults.
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
    CRD_GROUP: str = "custom.instana.io"
    CRD_VERSION: str = "v1"
    CRD_PLURAL: str = "dashboards"
    CRD_KIND: str = "Dashboard"
    DEFAULT_NAMESPACE: str = os.environ.get("DEFAULT_NAMESPACE", "default")

    # Rate limiting
    RATE_LIMIT: str = os.environ.get("RATE_LIMIT", "10/minute")

    # Activity events
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    # API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))
    CORS_ORIGINS: str = os.environ.get("CORS_ORIGINS", "*")


settings = Settings()
