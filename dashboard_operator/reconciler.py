"""
Dashboard Reconciler — the lifecycle state machine.

Given the identity of a Dashboard resource, the reconciler loads the current
object from the store and applies exactly one transition, chosen in this order:

  1. Not found             → nothing to do (already removed)
  2. Deletion requested    → delete remote dashboard, then clear the finalizer
  3. Provisioned           → nothing to do (no drift check)
     ...without finalizer  → re-add the finalizer (interrupted create)
  4. Pending               → create remote dashboard, write status, add finalizer

Design Principles:
  - Dispatch is a function of persisted state only, so any attempt can be
    retried from scratch after a failure or crash
  - A remote dashboard is created at most once per resource: once
    status.dashboardId is written, the create branch is never re-entered.
    A remote dashboard whose id cannot be written is deleted again before
    the error propagates
  - The finalizer is only cleared after the remote delete reported success
    or not-found; remote failures propagate to the scheduler
  - Every store / remote call is bounded by the reconcile Deadline
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from dashboard_operator.config import Settings, settings as default_settings
from dashboard_operator.errors import (
    ConflictError,
    DeadlineExceededError,
    ReconcileError,
    RemoteMismatchError,
    RemoteUnavailableError,
    ResourceNotFoundError,
    StoreError,
)
from dashboard_operator.events import EventPublisher
from dashboard_operator.models import ApiConfig, Dashboard, LifecycleState, ObjectIdentity, RemoteDashboard

logger = logging.getLogger("reconciler")


class ReconcileOutcome(str, Enum):
    GONE = "Gone"
    SKIPPED = "Skipped"
    CREATED = "Created"
    FINALIZER_REPAIRED = "FinalizerRepaired"
    DELETED = "Deleted"


class Deadline:
    """Time budget of one reconcile; hands out per-call timeouts."""

    def __init__(self, seconds: float, call_timeout: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds
        self.call_timeout = call_timeout

    def remaining(self) -> float:
        return self._expires_at - self._clock()

    def timeout(self) -> float:
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceededError("Reconcile deadline exceeded")
        if self.call_timeout:
            return min(remaining, self.call_timeout)
        return remaining


class DashboardReconciler:
    def __init__(self, store, remote, events: Optional[EventPublisher] = None,
                 settings: Settings = default_settings):
        self.store = store
        self.remote = remote
        self.events = events if events is not None else EventPublisher(None)
        self.settings = settings

    @property
    def finalizer(self) -> str:
        return self.settings.FINALIZER

    def new_deadline(self) -> Deadline:
        return Deadline(self.settings.RECONCILE_TIMEOUT, self.settings.CALL_TIMEOUT)

    def reconcile(self, identity: ObjectIdentity, deadline: Optional[Deadline] = None) -> ReconcileOutcome:
        """
        Reconcile one Dashboard. Returns the outcome on success; every
        failure is raised as a ReconcileError for the scheduler to retry.
        """
        deadline = deadline or self.new_deadline()
        logger.info(f"Reconcile called for: {identity}")

        dashboard = self.store.get(identity, timeout=deadline.timeout())
        if dashboard is None:
            logger.info(f"[{identity}] Dashboard not found — assuming it was deleted. Skipping.")
            return ReconcileOutcome.GONE
        logger.info(f"[{identity}] Loaded with resourceVersion {dashboard.resource_version}, "
                    f"state {dashboard.state.value}")

        if dashboard.deletion_requested:
            return self._finalize(dashboard, deadline)

        if dashboard.remote_id:
            if dashboard.has_finalizer(self.finalizer):
                logger.info(f"[{identity}] Has remote dashboard {dashboard.remote_id} — skipping")
                return ReconcileOutcome.SKIPPED
            return self._repair_finalizer(dashboard, deadline)

        return self._provision(dashboard, deadline)

    # -----------------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------------

    def _finalize(self, dashboard: Dashboard, deadline: Deadline) -> ReconcileOutcome:
        identity = dashboard.identity
        logger.info(f"[{identity}] Deletion requested")

        if dashboard.remote_id:
            api_config = self.store.load_api_config(timeout=deadline.timeout())
            try:
                deleted = self.remote.delete_dashboard(
                    dashboard.remote_id, api_config, timeout=deadline.timeout()
                )
            except RemoteUnavailableError as e:
                logger.warning(f"[{identity}] Remote delete of {dashboard.remote_id} failed — "
                               f"keeping finalizer: {e}")
                self.events.publish(identity, "DELETE_FAILED", str(e)[:150], LifecycleState.DELETING.value)
                raise
            if deleted:
                logger.info(f"[{identity}] Remote dashboard {dashboard.remote_id} deleted")
            else:
                logger.info(f"[{identity}] Remote dashboard {dashboard.remote_id} already gone")
            self.events.publish(identity, "REMOTE_DELETED", f"Remote dashboard {dashboard.remote_id} removed",
                                LifecycleState.DELETING.value)

        if not dashboard.has_finalizer(self.finalizer):
            logger.info(f"[{identity}] No finalizer to clear")
            return ReconcileOutcome.DELETED

        try:
            self.store.update_metadata(dashboard.without_finalizer(self.finalizer), timeout=deadline.timeout())
        except ResourceNotFoundError:
            logger.info(f"[{identity}] Removed while clearing finalizer")
        logger.info(f"[{identity}] Finalizer removed")
        self.events.publish(identity, "FINALIZER_REMOVED", "Finalizer removed", LifecycleState.DELETING.value)
        return ReconcileOutcome.DELETED

    # -----------------------------------------------------------------------
    # Provisioning
    # -----------------------------------------------------------------------

    def _provision(self, dashboard: Dashboard, deadline: Deadline) -> ReconcileOutcome:
        identity = dashboard.identity
        api_config = self.store.load_api_config(timeout=deadline.timeout())

        logger.info(f"[{identity}] Creating remote dashboard")
        remote = self.remote.create_dashboard(dashboard.config, api_config, timeout=deadline.timeout())
        logger.info(f"[{identity}] Remote dashboard created: {remote.id} ({remote.title})")
        self.events.publish(identity, "REMOTE_CREATED", f"Remote dashboard {remote.id} created",
                            LifecycleState.PENDING.value)

        try:
            recorded = self._record_remote(dashboard, remote, deadline)
        except ResourceNotFoundError:
            self._abandon(identity, remote.id, api_config)
            return ReconcileOutcome.GONE
        except ReconcileError:
            # Nothing points at the new remote dashboard; the next attempt creates a fresh one
            self._abandon(identity, remote.id, api_config)
            raise
        logger.info(f"[{identity}] resourceVersion after status update: {recorded.resource_version}")

        try:
            stored = self.store.update_metadata(recorded.with_finalizer(self.finalizer), timeout=deadline.timeout())
        except ResourceNotFoundError:
            self._abandon(identity, remote.id, api_config)
            return ReconcileOutcome.GONE
        logger.info(f"[{identity}] Finalizer added, resourceVersion {stored.resource_version}")
        self.events.publish(identity, "PROVISIONED", f"Dashboard {remote.id} provisioned",
                            LifecycleState.PROVISIONED.value)
        return ReconcileOutcome.CREATED

    def _record_remote(self, dashboard: Dashboard, remote: RemoteDashboard, deadline: Deadline) -> Dashboard:
        """
        Write status.dashboardId. The remote dashboard already exists, so a
        stale resourceVersion or a failed API server call is answered by
        re-reading and re-applying the status on the fresh object rather than
        by failing the reconcile.
        """
        identity = dashboard.identity
        attempts = max(1, self.settings.STATUS_WRITE_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                if attempt > 1:
                    dashboard = self._reread_for_status(identity, remote, deadline)
                updated = dashboard.with_remote(remote).with_condition(
                    "Ready", "True", "Provisioned", f"Remote dashboard {remote.id} created"
                )
                return self.store.update_status(updated, timeout=deadline.timeout())
            except RemoteMismatchError:
                raise
            except (ConflictError, StoreError) as e:
                if attempt == attempts:
                    logger.error(f"[{identity}] Could not record remote dashboard {remote.id} "
                                 f"after {attempts} attempts: {e}")
                    raise
                logger.info(f"[{identity}] Status write failed (attempt {attempt}/{attempts}) — re-reading: {e}")
            except DeadlineExceededError:
                logger.error(f"[{identity}] Deadline exceeded before remote dashboard {remote.id} was recorded")
                raise

    def _reread_for_status(self, identity: ObjectIdentity, remote: RemoteDashboard, deadline: Deadline) -> Dashboard:
        fresh = self.store.get(identity, timeout=deadline.timeout())
        if fresh is None:
            raise ResourceNotFoundError(f"Dashboard {identity} disappeared before status write")
        if fresh.remote_id and fresh.remote_id != remote.id:
            raise RemoteMismatchError(
                f"Dashboard {identity} already records remote dashboard {fresh.remote_id}"
            )
        return fresh

    def _repair_finalizer(self, dashboard: Dashboard, deadline: Deadline) -> ReconcileOutcome:
        identity = dashboard.identity
        logger.warning(f"[{identity}] Remote dashboard {dashboard.remote_id} recorded without finalizer — "
                       f"re-adding finalizer")
        try:
            self.store.update_metadata(dashboard.with_finalizer(self.finalizer), timeout=deadline.timeout())
        except ResourceNotFoundError:
            api_config = self.store.load_api_config(timeout=deadline.timeout())
            self._abandon(identity, dashboard.remote_id, api_config)
            return ReconcileOutcome.GONE
        self.events.publish(identity, "FINALIZER_REPAIRED", "Finalizer re-added",
                            LifecycleState.PROVISIONED.value)
        return ReconcileOutcome.FINALIZER_REPAIRED

    def _abandon(self, identity: ObjectIdentity, remote_id: str, api_config: ApiConfig):
        """
        Delete a remote dashboard that no resource records, either because the
        resource vanished or because its id could not be written to status.
        Runs on its own call budget: the reconcile deadline may already be spent.
        """
        logger.warning(f"[{identity}] Remote dashboard {remote_id} is not recorded — deleting it")
        try:
            self.remote.delete_dashboard(remote_id, api_config, timeout=self.settings.CALL_TIMEOUT)
        except RemoteUnavailableError:
            logger.error(f"[{identity}] Remote dashboard {remote_id} is orphaned")
            raise
        self.events.publish(identity, "REMOTE_DELETED", f"Orphaned remote dashboard {remote_id} removed")
