"""Prometheus metrics for the dashboard operator."""
from prometheus_client import Counter, Histogram

RECONCILE_TOTAL = Counter(
    "dashboard_operator_reconcile_total",
    "Completed reconciles by outcome",
    ["outcome"],
)
RECONCILE_ERRORS = Counter(
    "dashboard_operator_reconcile_errors_total",
    "Failed reconciles by error kind",
    ["error"],
)
RECONCILE_DURATION = Histogram(
    "dashboard_operator_reconcile_duration_seconds",
    "Wall time of a single reconcile",
)
