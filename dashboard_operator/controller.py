"""
Dashboard Operator — Kubernetes Operator for Instana custom dashboards

Architecture:
  Dashboard CRD → kopf watches → DashboardReconciler:
    create / resume / update → provision, repair the finalizer, or skip
    delete                   → delete remote dashboard, clear the finalizer

  Every handler re-reads the resource and runs the whole state machine, so
  the handler kind only decides when a reconcile runs, never what it does.
  Status-only writes (conditions, dashboardId) are outside kopf's diff and do
  not trigger an update handler.

  Finalizers:
    dashboard.custom.instana.io/finalizer is written by the reconciler and
    marks "a remote dashboard may exist". kopf keeps its own marker
    (HANDLER_FINALIZER) so the delete handler runs, and is retried, while the
    reconciler's finalizer is still in place.

  On Failure:
    - ConflictError → TemporaryError (re-fetch and recompute on retry)
    - Other ReconcileError → Ready=False condition + TemporaryError
    - Unexpected exceptions → logged, TemporaryError
    The retry delay doubles per attempt, capped at RETRY_MAX_DELAY.

  On Resume (Operator Restart):
    Every Dashboard is reconciled again → interrupted creates are repaired,
    pending deletions resumed

  Concurrency Control:
    kopf runs one handler at a time per Dashboard; MAX_PARALLEL_RECONCILES
    bounds the worker threads shared by all Dashboards
"""

import logging
import time

import kopf
from prometheus_client import start_http_server

from dashboard_operator import metrics
from dashboard_operator.config import Settings, settings as default_settings
from dashboard_operator.errors import ConflictError, ReconcileError, ResourceNotFoundError
from dashboard_operator.events import EventPublisher
from dashboard_operator.models import ObjectIdentity
from dashboard_operator.reconciler import DashboardReconciler, ReconcileOutcome
from dashboard_operator.remote import InstanaClient
from dashboard_operator.store import KubernetesDashboardStore

logger = logging.getLogger("dashboard-operator")

CRD_GROUP = default_settings.CRD_GROUP
CRD_VERSION = default_settings.CRD_VERSION
CRD_PLURAL = default_settings.CRD_PLURAL


def retry_delay(retry: int, settings: Settings = default_settings) -> float:
    """Delay after the (retry + 1)-th consecutive failure of a handler."""
    return min(settings.RETRY_BASE_DELAY * (2 ** min(retry, 32)), settings.RETRY_MAX_DELAY)


def build_reconciler(settings: Settings = default_settings) -> DashboardReconciler:
    store = KubernetesDashboardStore(settings)
    events = EventPublisher.from_url(settings.REDIS_URL)
    return DashboardReconciler(store, InstanaClient(), events=events, settings=settings)


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    cfg = default_settings
    settings.posting.enabled = True
    settings.persistence.finalizer = cfg.HANDLER_FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=cfg.CRD_GROUP)
    settings.execution.max_workers = cfg.MAX_PARALLEL_RECONCILES
    settings.watching.server_timeout = cfg.WATCH_TIMEOUT
    if memo.get("reconciler") is None:
        memo.reconciler = build_reconciler(cfg)
    logger.info(
        f"Dashboard Operator started (max_workers={cfg.MAX_PARALLEL_RECONCILES}, "
        f"namespace={cfg.WATCH_NAMESPACE or '*'})"
    )


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **kwargs):
    reconciler = memo.get("reconciler")
    if reconciler is not None:
        reconciler.remote.close()
    logger.info("Dashboard Operator stopped")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

@kopf.on.create(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.resume(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
@kopf.on.update(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def reconcile_dashboard(name, namespace, retry, memo, logger, **kwargs):
    """
    Bring a Dashboard to Provisioned.

    Idempotent: a recorded dashboardId is never created again, so kopf may
    replay this handler after any failure or restart.
    """
    run_reconcile(memo.reconciler, ObjectIdentity(namespace, name), retry, logger)


@kopf.on.delete(CRD_GROUP, CRD_VERSION, CRD_PLURAL)
def finalize_dashboard(name, namespace, retry, memo, logger, **kwargs):
    """
    Remove the remote dashboard, then the finalizer.

    The finalizer stays until the remote delete succeeded or found nothing;
    kopf keeps retrying until then.
    """
    run_reconcile(memo.reconciler, ObjectIdentity(namespace, name), retry, logger)


def run_reconcile(reconciler: DashboardReconciler, identity: ObjectIdentity, retry: int,
                  logger: logging.Logger = logger) -> ReconcileOutcome:
    """Reconcile once and translate failures into kopf retries."""
    started = time.monotonic()
    delay = retry_delay(retry, reconciler.settings)
    try:
        outcome = reconciler.reconcile(identity, reconciler.new_deadline())
    except ResourceNotFoundError:
        outcome = ReconcileOutcome.GONE
    except ConflictError as e:
        metrics.RECONCILE_ERRORS.labels(error=e.reason).inc()
        logger.info(f"[{identity}] {e} — retrying in {delay:.1f}s")
        raise kopf.TemporaryError(str(e), delay=delay) from e
    except ReconcileError as e:
        metrics.RECONCILE_ERRORS.labels(error=e.reason).inc()
        logger.error(f"[{identity}] Reconcile failed ({e.reason}), retrying in {delay:.1f}s: {e}")
        _record_failure(reconciler, identity, e, logger)
        raise kopf.TemporaryError(f"{e.reason}: {e}", delay=delay) from e
    except Exception as e:
        metrics.RECONCILE_ERRORS.labels(error=type(e).__name__).inc()
        logger.exception(f"[{identity}] Unexpected reconcile error, retrying in {delay:.1f}s: {e}")
        raise kopf.TemporaryError(f"Unexpected error: {e}", delay=delay) from e
    finally:
        metrics.RECONCILE_DURATION.observe(time.monotonic() - started)

    metrics.RECONCILE_TOTAL.labels(outcome=outcome.value).inc()
    logger.info(f"[{identity}] Reconciled: {outcome.value}")
    return outcome


def _record_failure(reconciler: DashboardReconciler, identity: ObjectIdentity,
                    error: ReconcileError, logger: logging.Logger):
    """Surface the error on the resource's Ready condition (best effort)."""
    reconciler.events.publish(identity, "RECONCILE_FAILED", str(error)[:150])
    try:
        reconciler.store.record_condition(
            identity, "Ready", "False", error.reason, str(error)[:200],
            timeout=reconciler.settings.CALL_TIMEOUT,
        )
    except ReconcileError as e:
        logger.warning(f"[{identity}] Could not record failure condition: {e}")


def main():
    cfg = default_settings
    logging.basicConfig(
        level=getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if cfg.METRICS_PORT:
        start_http_server(cfg.METRICS_PORT)
        logger.info(f"Metrics served on :{cfg.METRICS_PORT}")
    if cfg.WATCH_NAMESPACE:
        kopf.run(standalone=True, namespaces=[cfg.WATCH_NAMESPACE])
    else:
        kopf.run(standalone=True, clusterwide=True)


if __name__ == "__main__":
    main()
