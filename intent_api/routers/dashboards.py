"""
Dashboard API routes — CRUD endpoints for Dashboard CRDs.

Features:
  - Identity layer: X-User-Id header recorded in the audit log
  - Rate limiting per-IP via slowapi
  - Prometheus metrics exposition
  - Activity events from the operator's Redis Streams
  - Audit logging (in-memory ring buffer)
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from collections import deque

from fastapi import APIRouter, HTTPException, Query, Request
from kubernetes.client import ApiException
from prometheus_client import Counter, Gauge
from slowapi import Limiter
from slowapi.util import get_remote_address

from dashboard_operator.events import EventPublisher
from dashboard_operator.models import ObjectIdentity
from intent_api.config import settings
from intent_api.models import (
    DashboardCreateRequest, DashboardResponse, DashboardListResponse, ErrorResponse,
)
from intent_api.services.kubernetes_service import (
    list_dashboards, get_dashboard, create_dashboard, delete_dashboard, count_dashboards_by_phase,
)

logger = logging.getLogger("dashboards")

router = APIRouter(prefix="/dashboards", tags=["dashboards"])
limiter = Limiter(key_func=get_remote_address)

# --- Audit log (in-memory ring buffer) ---
_audit_log: deque[dict] = deque(maxlen=50)


def _audit(action: str, dashboard: str, result: str, detail: str = "",
           user_id: str = "anonymous"):
    entry = {
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "action": action,
        "dashboard": dashboard,
        "user_id": user_id,
        "result": result,
        "detail": detail,
    }
    _audit_log.append(entry)
    logger.info(f"AUDIT: {action} {dashboard} by {user_id} -> {result}")


# --- Activity events (optional Redis) ---
_events: Optional[EventPublisher] = None


def _get_events() -> EventPublisher:
    """Lazy-init the Redis event reader. Disabled if REDIS_URL is unset or unreachable."""
    global _events
    if _events is None:
        _events = EventPublisher.from_url(settings.REDIS_URL)
    return _events


# --- Identity extraction ---
def _get_user_id(request: Request) -> str:
    """
    Extract user identity from X-User-Id header.
    Falls back to 'anonymous' if not provided.
    """
    return request.headers.get("x-user-id", "anonymous")


# --- Prometheus metrics ---
_metrics_initialized = False


def _init_metrics():
    """Initialize Prometheus metrics (called once at startup)."""
    global _metrics_initialized
    if _metrics_initialized:
        return
    global DASHBOARDS_CREATED, DASHBOARDS_DELETED, API_FAILURES, DASHBOARDS_TOTAL
    DASHBOARDS_CREATED = Counter(
        "dashboard_api_dashboards_created_total",
        "Total dashboards declared",
        ["namespace"],
    )
    DASHBOARDS_DELETED = Counter(
        "dashboard_api_dashboards_deleted_total",
        "Total dashboard deletions requested",
    )
    API_FAILURES = Counter(
        "dashboard_api_failures_total",
        "Total Kubernetes API failures observed by the intent API",
    )
    DASHBOARDS_TOTAL = Gauge(
        "dashboard_api_dashboards_total",
        "Current dashboards by phase",
        ["phase"],
    )
    _metrics_initialized = True


def _record_create(namespace: str):
    if _metrics_initialized:
        DASHBOARDS_CREATED.labels(namespace=namespace).inc()


def _record_delete():
    if _metrics_initialized:
        DASHBOARDS_DELETED.inc()


def _record_failure():
    if _metrics_initialized:
        API_FAILURES.inc()


def _update_gauges():
    if _metrics_initialized:
        counts = count_dashboards_by_phase()
        for phase in ["Pending", "Provisioned", "Deleting"]:
            DASHBOARDS_TOTAL.labels(phase=phase).set(counts.get(phase, 0))


# =========================================================================
# REST Endpoints
# =========================================================================

@router.post("", response_model=DashboardResponse, status_code=201,
             responses={429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def create_dashboard_endpoint(req: DashboardCreateRequest, request: Request):
    """Declare a dashboard. Idempotent — returns the existing resource if the name matches."""
    user_id = _get_user_id(request)
    namespace = req.namespace or settings.DEFAULT_NAMESPACE
    key = f"{namespace}/{req.name}"
    try:
        dashboard = create_dashboard(namespace, req.name, req.config)
    except ApiException as e:
        _audit("CREATE", key, "FAILED", str(e.reason), user_id)
        _record_failure()
        logger.error(f"Failed to create dashboard {key}: {e.status} {e.reason}")
        raise HTTPException(status_code=500, detail=f"Failed to create dashboard: {e.reason}")
    _audit("CREATE", key, "SUCCESS", user_id=user_id)
    _record_create(namespace)
    return dashboard


@router.get("", response_model=DashboardListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_dashboards_endpoint(
    request: Request,
    namespace: Optional[str] = Query(None, description="Filter by namespace"),
):
    """List dashboards, optionally scoped to a namespace."""
    dashboards = list_dashboards(namespace=namespace)
    return DashboardListResponse(dashboards=dashboards, total=len(dashboards))


# --- Audit endpoint (declared before /{namespace}/{name} so it is matched first) ---
@router.get("/audit/log")
@limiter.limit(settings.RATE_LIMIT)
async def get_audit_log(request: Request):
    """Get the audit log (last 50 entries)."""
    return {"entries": list(_audit_log), "count": len(_audit_log)}


@router.get("/{namespace}/{name}", response_model=DashboardResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_dashboard_endpoint(namespace: str, name: str, request: Request):
    """Get a specific dashboard."""
    dashboard = get_dashboard(namespace, name)
    if not dashboard:
        raise HTTPException(status_code=404, detail=f"Dashboard '{namespace}/{name}' not found")
    return dashboard


@router.delete("/{namespace}/{name}", status_code=202,
               responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def delete_dashboard_endpoint(namespace: str, name: str, request: Request):
    """Request deletion. Returns 202 Accepted — the operator removes the remote dashboard."""
    user_id = _get_user_id(request)
    deleted = delete_dashboard(namespace, name)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Dashboard '{namespace}/{name}' not found")
    _audit("DELETE", f"{namespace}/{name}", "ACCEPTED", user_id=user_id)
    _record_delete()
    return {"message": f"Dashboard '{namespace}/{name}' deletion initiated", "status": "accepted"}


@router.get("/{namespace}/{name}/events")
@limiter.limit(settings.RATE_LIMIT)
async def get_dashboard_events(namespace: str, name: str, request: Request):
    """Get the operator's activity events for a dashboard (empty without Redis)."""
    identity = ObjectIdentity(namespace, name)
    return {"dashboard": str(identity), "events": _get_events().history(identity)}
