"""
Kubernetes service layer — abstracts all K8s API interactions for Dashboard CRDs.

Design principles:
  - Idempotent: create returns the existing resource if the name is taken
  - Deletion only marks the resource; the operator removes the remote
    dashboard and then releases its finalizer
  - Clean error handling: translates K8s API exceptions to domain errors
"""

import json
import logging
from typing import Optional, Union

from kubernetes import client, config
from kubernetes.client import ApiException

from dashboard_operator.models import Dashboard
from intent_api.config import settings
from intent_api.models import DashboardCondition, DashboardResponse

logger = logging.getLogger("kubernetes_service")

_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


def _api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


def _parse_dashboard(item: dict) -> DashboardResponse:
    """Convert a raw K8s CRD dict into a DashboardResponse model."""
    dashboard = Dashboard.from_body(item)
    conditions = [
        DashboardCondition(**c) for c in dashboard.conditions
    ]
    return DashboardResponse(
        name=dashboard.identity.name,
        namespace=dashboard.identity.namespace,
        phase=dashboard.state.value,
        dashboardId=dashboard.remote_id or None,
        dashboardTitle=dashboard.remote_title or None,
        config=dashboard.config,
        createdAt=item.get("metadata", {}).get("creationTimestamp"),
        conditions=conditions,
    )


def list_dashboards(namespace: Optional[str] = None) -> list[DashboardResponse]:
    """List Dashboard CRDs, in one namespace or cluster-wide."""
    api = _api()
    if namespace:
        result = api.list_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL
        )
    else:
        result = api.list_cluster_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, settings.CRD_PLURAL
        )
    return [_parse_dashboard(item) for item in result.get("items", [])]


def get_dashboard(namespace: str, name: str) -> Optional[DashboardResponse]:
    """Get a single Dashboard CRD."""
    api = _api()
    try:
        item = api.get_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, name
        )
        return _parse_dashboard(item)
    except ApiException as e:
        if e.status == 404:
            return None
        raise


def create_dashboard(namespace: str, name: str, dashboard_config: Union[dict, str]) -> DashboardResponse:
    """
    Create a Dashboard CRD. Idempotent: returns existing resource if already created.
    The config is stored as opaque JSON text in spec.config.
    """
    api = _api()

    existing = get_dashboard(namespace, name)
    if existing:
        logger.info(f"Dashboard {namespace}/{name} already exists — returning existing (idempotent)")
        return existing

    if not isinstance(dashboard_config, str):
        dashboard_config = json.dumps(dashboard_config)

    body = {
        "apiVersion": f"{settings.CRD_GROUP}/{settings.CRD_VERSION}",
        "kind": settings.CRD_KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": {
                "app.kubernetes.io/managed-by": "dashboard-intent-api",
            },
        },
        "spec": {
            "config": dashboard_config,
        },
    }

    try:
        result = api.create_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, body
        )
    except ApiException as e:
        if e.status == 409:
            # Lost a race with a concurrent create of the same name
            return get_dashboard(namespace, name)
        raise
    logger.info(f"Dashboard {namespace}/{name} created")
    return _parse_dashboard(result)


def delete_dashboard(namespace: str, name: str) -> bool:
    """Request deletion of a Dashboard CRD. Returns True if accepted, False if not found."""
    api = _api()
    try:
        api.delete_namespaced_custom_object(
            settings.CRD_GROUP, settings.CRD_VERSION, namespace, settings.CRD_PLURAL, name
        )
        logger.info(f"Dashboard {namespace}/{name} deletion initiated")
        return True
    except ApiException as e:
        if e.status == 404:
            return False
        raise


def count_dashboards_by_phase() -> dict:
    """Count dashboards grouped by lifecycle phase."""
    dashboards = list_dashboards()
    counts = {"total": len(dashboards), "Pending": 0, "Provisioned": 0, "Deleting": 0}
    for d in dashboards:
        if d.phase in counts:
            counts[d.phase] += 1
    return counts
