"""
Kubernetes service layer — the resource store the reconciler talks to.

Design principles:
  - Reads never fail on absence: a missing Dashboard is returned as None
  - Writes carry metadata.resourceVersion; a stale version surfaces as
    ConflictError so the caller re-fetches instead of overwriting
  - Status and metadata are separate writes (status subresource vs object)
  - Every call takes an explicit timeout
  - Clean error handling: translates K8s API exceptions to domain errors
"""

import logging
from typing import Optional

import urllib3
from kubernetes import client, config
from kubernetes.client import ApiException

from dashboard_operator.config import Settings, settings as default_settings
from dashboard_operator.errors import (
    ConfigurationError,
    ConflictError,
    ResourceNotFoundError,
    StoreError,
)
from dashboard_operator.models import ApiConfig, Dashboard, ObjectIdentity, parse_dashboard

logger = logging.getLogger("kubernetes-store")

_k8s_loaded = False


def _ensure_k8s(cfg: Settings):
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if cfg.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=cfg.KUBECONFIG or None)
    _k8s_loaded = True


def _translate(e: ApiException, identity: ObjectIdentity, action: str) -> Exception:
    if e.status == 404:
        return ResourceNotFoundError(f"Dashboard {identity} not found during {action}")
    if e.status == 409:
        return ConflictError(f"Dashboard {identity} changed since it was read ({action})")
    return StoreError(f"{action} on Dashboard {identity} failed: {e.status} {e.reason}")


class KubernetesDashboardStore:
    def __init__(self, settings: Settings = default_settings,
                 custom_api: Optional[client.CustomObjectsApi] = None,
                 core_api: Optional[client.CoreV1Api] = None):
        self.settings = settings
        self._custom = custom_api
        self._core = core_api

    @property
    def custom(self) -> client.CustomObjectsApi:
        if self._custom is None:
            _ensure_k8s(self.settings)
            self._custom = client.CustomObjectsApi()
        return self._custom

    @property
    def core(self) -> client.CoreV1Api:
        if self._core is None:
            _ensure_k8s(self.settings)
            self._core = client.CoreV1Api()
        return self._core

    def _crd(self) -> tuple[str, str]:
        return self.settings.CRD_GROUP, self.settings.CRD_VERSION

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, identity: ObjectIdentity, timeout: float) -> Optional[Dashboard]:
        """Get a Dashboard by identity. Returns None if it does not exist."""
        group, version = self._crd()
        try:
            body = self.custom.get_namespaced_custom_object(
                group, version, identity.namespace, self.settings.CRD_PLURAL, identity.name,
                _request_timeout=timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise _translate(e, identity, "get") from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"get on Dashboard {identity} failed: {e}") from e
        return parse_dashboard(body)

    def load_api_config(self, timeout: float) -> ApiConfig:
        """
        Read the remote API credentials from the operator ConfigMap.
        Env values fill in whatever the ConfigMap does not provide.
        """
        cfg = self.settings
        data = {}
        try:
            cm = self.core.read_namespaced_config_map(
                cfg.API_CONFIG_NAME, cfg.API_CONFIG_NAMESPACE, _request_timeout=timeout,
            )
            data = cm.data or {}
        except ApiException as e:
            if e.status != 404:
                raise StoreError(
                    f"Reading ConfigMap {cfg.API_CONFIG_NAMESPACE}/{cfg.API_CONFIG_NAME} failed: "
                    f"{e.status} {e.reason}"
                ) from e
            logger.info(f"ConfigMap {cfg.API_CONFIG_NAMESPACE}/{cfg.API_CONFIG_NAME} not found — using env")
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"Reading ConfigMap {cfg.API_CONFIG_NAME} failed: {e}") from e

        base_url = data.get(cfg.API_BASE_URL_KEY) or cfg.INSTANA_BASE_URL
        token = data.get(cfg.API_TOKEN_KEY) or cfg.INSTANA_API_TOKEN
        if not base_url or not token:
            raise ConfigurationError(
                f"Remote API config incomplete: set {cfg.API_BASE_URL_KEY} and {cfg.API_TOKEN_KEY} "
                f"in ConfigMap {cfg.API_CONFIG_NAMESPACE}/{cfg.API_CONFIG_NAME}"
            )
        logger.info(f"Loaded remote API config. BaseUrl: {base_url}")
        return ApiConfig(base_url=base_url, token=token)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def update_status(self, dashboard: Dashboard, timeout: float) -> Dashboard:
        """Replace the status subresource. Returns the stored object."""
        group, version = self._crd()
        identity = dashboard.identity
        try:
            body = self.custom.replace_namespaced_custom_object_status(
                group, version, identity.namespace, self.settings.CRD_PLURAL, identity.name,
                dashboard.to_body(), _request_timeout=timeout,
            )
        except ApiException as e:
            raise _translate(e, identity, "status update") from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"status update on Dashboard {identity} failed: {e}") from e
        return Dashboard.from_body(body)

    def update_metadata(self, dashboard: Dashboard, timeout: float) -> Dashboard:
        """Replace the object (finalizers). Returns the stored object."""
        group, version = self._crd()
        identity = dashboard.identity
        try:
            body = self.custom.replace_namespaced_custom_object(
                group, version, identity.namespace, self.settings.CRD_PLURAL, identity.name,
                dashboard.to_body(), _request_timeout=timeout,
            )
        except ApiException as e:
            raise _translate(e, identity, "metadata update") from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"metadata update on Dashboard {identity} failed: {e}") from e
        # The finalizer that was just removed may have been the last one
        return parse_dashboard(body) or dashboard

    def record_condition(self, identity: ObjectIdentity, ctype: str, status: str,
                         reason: str, message: str, timeout: float):
        """Merge-patch a single status condition. Absent resources are ignored."""
        dashboard = self.get(identity, timeout)
        if dashboard is None:
            return
        updated = dashboard.with_condition(ctype, status, reason, message)
        group, version = self._crd()
        try:
            self.custom.patch_namespaced_custom_object_status(
                group, version, identity.namespace, self.settings.CRD_PLURAL, identity.name,
                {"status": {"conditions": list(updated.conditions)}},
                _request_timeout=timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise _translate(e, identity, "condition update") from e
        except urllib3.exceptions.HTTPError as e:
            raise StoreError(f"condition update on Dashboard {identity} failed: {e}") from e
