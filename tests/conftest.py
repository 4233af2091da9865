"""Shared fixtures: in-memory resource store and remote dashboard service."""

import copy
import itertools
import json
from collections import defaultdict

import pytest

from dashboard_operator.config import Settings
from dashboard_operator.errors import ConflictError, ResourceNotFoundError
from dashboard_operator.models import ApiConfig, Dashboard, ObjectIdentity, RemoteDashboard
from dashboard_operator.reconciler import DashboardReconciler

FINALIZER = "dashboard.custom.instana.io/finalizer"


def dashboard_body(name="team-overview", namespace="default", config='{"title":"X"}',
                   remote_id=None, remote_title=None, finalizers=None, deleting=False,
                   generation=1, resource_version="1"):
    body = {
        "apiVersion": "custom.instana.io/v1",
        "kind": "Dashboard",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "resourceVersion": resource_version,
            "generation": generation,
            "finalizers": list(finalizers or []),
        },
        "spec": {"config": config},
    }
    if deleting:
        body["metadata"]["deletionTimestamp"] = "2026-10-18T10:00:00Z"
    if remote_id:
        body["status"] = {"dashboardId": remote_id, "dashboardTitle": remote_title or ""}
    return body


class FakeStore:
    """
    Mimics the API server: resourceVersion checks on every write, status and
    metadata as separate writes, and removal once a deleting object has no
    finalizers left.
    """

    def __init__(self, api_config=None):
        self.objects: dict[ObjectIdentity, dict] = {}
        self.api_config = api_config or ApiConfig("https://instana.example", "secret-token")
        self.writes: list[tuple[str, ObjectIdentity]] = []
        self.conditions: list[tuple] = []
        self.config_loads = 0
        self._failures = defaultdict(list)
        self._rv = itertools.count(100)

    # --- test helpers ---

    def put(self, body: dict) -> ObjectIdentity:
        body = copy.deepcopy(body)
        identity = ObjectIdentity(body["metadata"]["namespace"], body["metadata"]["name"])
        self.objects[identity] = body
        return identity

    def fail(self, op: str, exc: Exception, times: int = 1):
        self._failures[op].extend([exc] * times)

    def dashboard(self, identity: ObjectIdentity) -> Dashboard:
        return Dashboard.from_body(self.objects[identity])

    def request_deletion(self, identity: ObjectIdentity):
        body = self.objects[identity]
        body["metadata"]["deletionTimestamp"] = "2026-10-18T10:00:00Z"
        self._bump(body)
        self._collect(identity)

    def _maybe_fail(self, op: str):
        if self._failures[op]:
            raise self._failures[op].pop(0)

    def _bump(self, body: dict):
        body["metadata"]["resourceVersion"] = str(next(self._rv))

    def _collect(self, identity: ObjectIdentity):
        body = self.objects.get(identity)
        if body and body["metadata"].get("deletionTimestamp") and not body["metadata"].get("finalizers"):
            del self.objects[identity]

    def _current(self, dashboard: Dashboard) -> dict:
        body = self.objects.get(dashboard.identity)
        if body is None:
            raise ResourceNotFoundError(f"{dashboard.identity} not found")
        if body["metadata"]["resourceVersion"] != dashboard.resource_version:
            raise ConflictError(f"{dashboard.identity} stale resourceVersion")
        return body

    # --- store interface ---

    def get(self, identity, timeout):
        self._maybe_fail("get")
        body = self.objects.get(identity)
        return Dashboard.from_body(body) if body else None

    def load_api_config(self, timeout):
        self._maybe_fail("load_api_config")
        self.config_loads += 1
        return self.api_config

    def update_status(self, dashboard, timeout):
        self._maybe_fail("update_status")
        body = self._current(dashboard)
        body["status"] = dashboard.to_body()["status"]
        self._bump(body)
        self.writes.append(("status", dashboard.identity))
        return Dashboard.from_body(body)

    def update_metadata(self, dashboard, timeout):
        self._maybe_fail("update_metadata")
        body = self._current(dashboard)
        body["metadata"]["finalizers"] = list(dashboard.finalizers)
        self._bump(body)
        self.writes.append(("metadata", dashboard.identity))
        result = Dashboard.from_body(body)
        self._collect(dashboard.identity)
        return result

    def record_condition(self, identity, ctype, status, reason, message, timeout):
        self._maybe_fail("record_condition")
        self.conditions.append((identity, ctype, status, reason, message))


class FakeRemote:
    def __init__(self):
        self.dashboards: dict[str, str] = {}
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.timeouts: list[float] = []
        self._ids = itertools.count(1)
        self._failures = defaultdict(list)

    def fail(self, op: str, exc: Exception, times: int = 1):
        self._failures[op].extend([exc] * times)

    def create_dashboard(self, config_payload, api_config, timeout):
        self.timeouts.append(timeout)
        if self._failures["create"]:
            raise self._failures["create"].pop(0)
        remote_id = f"d{next(self._ids)}"
        title = json.loads(config_payload).get("title", "")
        self.dashboards[remote_id] = config_payload
        self.created.append(config_payload)
        return RemoteDashboard(id=remote_id, title=title)

    def delete_dashboard(self, remote_id, api_config, timeout):
        self.timeouts.append(timeout)
        if self._failures["delete"]:
            raise self._failures["delete"].pop(0)
        self.deleted.append(remote_id)
        return self.dashboards.pop(remote_id, None) is not None

    @property
    def calls(self) -> int:
        return len(self.created) + len(self.deleted)


@pytest.fixture
def settings():
    return Settings(
        RECONCILE_TIMEOUT=30,
        CALL_TIMEOUT=5,
        STATUS_WRITE_ATTEMPTS=3,
        RETRY_BASE_DELAY=1,
        RETRY_MAX_DELAY=60,
        WATCH_NAMESPACE="",
        INSTANA_BASE_URL="",
        INSTANA_API_TOKEN="",
    )


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def reconciler(store, remote, settings):
    return DashboardReconciler(store, remote, settings=settings)
