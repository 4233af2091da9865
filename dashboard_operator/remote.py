"""
Remote dashboard service client (Instana custom dashboards API).

Responsibilities:
- Create a dashboard from the opaque config payload of a Dashboard resource.
- Delete a dashboard by its remote id; a missing dashboard counts as deleted.
- Translate transport / API failures into RemoteUnavailableError so the
  reconciler can propagate them instead of swallowing them.

One pooled httpx.Client is shared by all workers; every call carries its own
timeout taken from the reconcile deadline.
"""
import logging
from typing import Optional

import httpx

from dashboard_operator.errors import MalformedResponseError, RemoteUnavailableError
from dashboard_operator.models import ApiConfig, RemoteDashboard

logger = logging.getLogger("instana-client")

DASHBOARD_PATH = "/api/custom-dashboard"


class InstanaClient:
    def __init__(self, http: Optional[httpx.Client] = None):
        self._http = http or httpx.Client()

    def close(self):
        self._http.close()

    @staticmethod
    def _headers(api_config: ApiConfig) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "authorization": f"apiToken {api_config.token}",
        }

    @staticmethod
    def _url(api_config: ApiConfig, suffix: str = "") -> str:
        return api_config.base_url.rstrip("/") + DASHBOARD_PATH + suffix

    def _send(self, method: str, url: str, api_config: ApiConfig, timeout: float,
              content: Optional[bytes] = None) -> httpx.Response:
        try:
            response = self._http.request(
                method, url,
                content=content,
                headers=self._headers(api_config),
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise RemoteUnavailableError(f"{method} {url} failed: {e}") from e
        logger.info(f"{method} {url} -> {response.status_code}")
        return response

    def create_dashboard(self, config_payload: str, api_config: ApiConfig,
                         timeout: float) -> RemoteDashboard:
        """POST the config payload; returns the id and title assigned remotely."""
        response = self._send(
            "POST", self._url(api_config), api_config, timeout,
            content=config_payload.encode("utf-8"),
        )
        if not response.is_success:
            raise RemoteUnavailableError(
                f"Dashboard create rejected: HTTP {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Dashboard create returned non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedResponseError(
                f"Dashboard create response has no id: {str(data)[:200]}",
                status_code=response.status_code,
            )
        return RemoteDashboard(id=str(data["id"]), title=str(data.get("title") or ""))

    def delete_dashboard(self, remote_id: str, api_config: ApiConfig, timeout: float) -> bool:
        """
        Delete a remote dashboard. Returns True if it was deleted, False if
        it no longer existed. Any other outcome raises RemoteUnavailableError.
        """
        response = self._send("DELETE", self._url(api_config, f"/{remote_id}"), api_config, timeout)
        if response.status_code == 404:
            return False
        if not response.is_success:
            raise RemoteUnavailableError(
                f"Dashboard delete rejected: HTTP {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        return True
