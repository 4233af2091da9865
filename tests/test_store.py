from dataclasses import replace
from types import SimpleNamespace
from unittest import mock

import pytest
from kubernetes.client import ApiException

from conftest import FINALIZER, dashboard_body
from dashboard_operator.errors import (
    ConfigurationError,
    ConflictError,
    ResourceNotFoundError,
    StoreError,
)
from dashboard_operator.models import Dashboard, ObjectIdentity, RemoteDashboard
from dashboard_operator.store import KubernetesDashboardStore

IDENTITY = ObjectIdentity("default", "team-overview")


@pytest.fixture
def custom():
    return mock.MagicMock()


@pytest.fixture
def core():
    return mock.MagicMock()


@pytest.fixture
def k8s_store(settings, custom, core):
    return KubernetesDashboardStore(settings, custom_api=custom, core_api=core)


def test_get_returns_dashboard(k8s_store, custom):
    custom.get_namespaced_custom_object.return_value = dashboard_body(remote_id="d1")

    dashboard = k8s_store.get(IDENTITY, timeout=4)

    assert dashboard.remote_id == "d1"
    custom.get_namespaced_custom_object.assert_called_once_with(
        "custom.instana.io", "v1", "default", "dashboards", "team-overview", _request_timeout=4,
    )


def test_get_missing_returns_none(k8s_store, custom):
    custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    assert k8s_store.get(IDENTITY, timeout=4) is None


def test_get_server_error_is_store_error(k8s_store, custom):
    custom.get_namespaced_custom_object.side_effect = ApiException(status=500, reason="boom")

    with pytest.raises(StoreError):
        k8s_store.get(IDENTITY, timeout=4)


def test_update_status_sends_resource_version(k8s_store, custom):
    dashboard = Dashboard.from_body(dashboard_body(resource_version="42"))
    stored = dashboard_body(remote_id="d1", resource_version="43")
    custom.replace_namespaced_custom_object_status.return_value = stored

    result = k8s_store.update_status(dashboard.with_remote(RemoteDashboard("d1", "X")), timeout=4)

    args, kwargs = custom.replace_namespaced_custom_object_status.call_args
    body = args[5]
    assert body["metadata"]["resourceVersion"] == "42"
    assert body["status"]["dashboardId"] == "d1"
    assert kwargs["_request_timeout"] == 4
    assert result.resource_version == "43"


def test_update_status_conflict(k8s_store, custom):
    custom.replace_namespaced_custom_object_status.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(ConflictError):
        k8s_store.update_status(Dashboard.from_body(dashboard_body()), timeout=4)


def test_update_metadata_sends_finalizers(k8s_store, custom):
    dashboard = Dashboard.from_body(dashboard_body(remote_id="d1")).with_finalizer(FINALIZER)
    custom.replace_namespaced_custom_object.return_value = dashboard_body(
        remote_id="d1", finalizers=[FINALIZER], resource_version="2",
    )

    result = k8s_store.update_metadata(dashboard, timeout=4)

    body = custom.replace_namespaced_custom_object.call_args[0][5]
    assert body["metadata"]["finalizers"] == [FINALIZER]
    assert result.has_finalizer(FINALIZER)


def test_update_metadata_on_missing_resource(k8s_store, custom):
    custom.replace_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(ResourceNotFoundError):
        k8s_store.update_metadata(Dashboard.from_body(dashboard_body()), timeout=4)


def test_load_api_config_from_config_map(k8s_store, core):
    core.read_namespaced_config_map.return_value = SimpleNamespace(data={
        "instana-base-url": "https://tenant.instana.io",
        "instana-api-token": "tok",
    })

    api_config = k8s_store.load_api_config(timeout=4)

    assert api_config.base_url == "https://tenant.instana.io"
    assert api_config.token == "tok"
    core.read_namespaced_config_map.assert_called_once_with(
        "instana-custom-dashboard-config", "default", _request_timeout=4,
    )


def test_load_api_config_falls_back_to_env_settings(custom, core, settings):
    env_settings = replace(settings, INSTANA_BASE_URL="https://env.instana.io", INSTANA_API_TOKEN="env-tok")
    core.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")

    api_config = KubernetesDashboardStore(env_settings, custom_api=custom, core_api=core).load_api_config(4)

    assert api_config.base_url == "https://env.instana.io"
    assert api_config.token == "env-tok"


def test_load_api_config_incomplete(k8s_store, core):
    core.read_namespaced_config_map.return_value = SimpleNamespace(data={"instana-base-url": "https://x"})

    with pytest.raises(ConfigurationError):
        k8s_store.load_api_config(timeout=4)


def test_record_condition_patches_status(k8s_store, custom):
    custom.get_namespaced_custom_object.return_value = dashboard_body()

    k8s_store.record_condition(IDENTITY, "Ready", "False", "RemoteUnavailable", "HTTP 503", timeout=4)

    patch = custom.patch_namespaced_custom_object_status.call_args[0][5]
    [condition] = patch["status"]["conditions"]
    assert condition["type"] == "Ready"
    assert condition["status"] == "False"
    assert condition["reason"] == "RemoteUnavailable"


def test_record_condition_ignores_missing_resource(k8s_store, custom):
    custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

    k8s_store.record_condition(IDENTITY, "Ready", "False", "RemoteUnavailable", "x", timeout=4)

    custom.patch_namespaced_custom_object_status.assert_not_called()

