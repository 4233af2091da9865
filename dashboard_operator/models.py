"""
Domain models for Dashboard custom resources.

A Dashboard is parsed from the raw Kubernetes body once and carried around as
an immutable value. Every mutation (status, finalizers, conditions) returns a
new Dashboard; to_body() renders it back for a replace call, preserving any
fields the operator does not own.
"""
import copy
import json
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class LifecycleState(str, Enum):
    PENDING = "Pending"
    PROVISIONED = "Provisioned"
    DELETING = "Deleting"


@dataclass(frozen=True)
class ObjectIdentity:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ApiConfig:
    """Connection details for the remote dashboard service."""
    base_url: str
    token: str = field(repr=False)


@dataclass(frozen=True)
class RemoteDashboard:
    id: str
    title: str = ""


# ---------------------------------------------------------------------------
# Status condition helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(conditions: list, ctype: str, status: str, reason: str, message: str):
    """Upsert a condition in a conditions list."""
    for c in conditions:
        if c.get("type") == ctype:
            if (c.get("status"), c.get("reason"), c.get("message")) != (status, reason, message):
                c["lastTransitionTime"] = now_iso()
            c["status"] = status
            c["reason"] = reason
            c["message"] = message
            return
    conditions.append({
        "type": ctype,
        "status": status,
        "reason": reason,
        "message": message,
        "lastTransitionTime": now_iso(),
    })


# ---------------------------------------------------------------------------
# Dashboard resource
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Dashboard:
    identity: ObjectIdentity
    resource_version: str = ""
    config: str = ""
    remote_id: str = ""
    remote_title: str = ""
    deletion_requested: bool = False
    finalizers: tuple = ()
    conditions: tuple = ()
    body: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_body(cls, body: dict) -> "Dashboard":
        metadata = body.get("metadata") or {}
        spec = body.get("spec") or {}
        status = body.get("status") or {}
        config = spec.get("config", "")
        if config is None:
            config = ""
        elif not isinstance(config, str):
            config = json.dumps(config)
        return cls(
            identity=ObjectIdentity(metadata.get("namespace", "default"), metadata["name"]),
            resource_version=metadata.get("resourceVersion", ""),
            config=config,
            remote_id=status.get("dashboardId") or "",
            remote_title=status.get("dashboardTitle") or "",
            deletion_requested=metadata.get("deletionTimestamp") is not None,
            finalizers=tuple(metadata.get("finalizers") or ()),
            conditions=tuple(copy.deepcopy(status.get("conditions") or [])),
            body=copy.deepcopy(body),
        )

    @property
    def state(self) -> LifecycleState:
        if self.deletion_requested:
            return LifecycleState.DELETING
        if self.remote_id:
            return LifecycleState.PROVISIONED
        return LifecycleState.PENDING

    def has_finalizer(self, name: str) -> bool:
        return name in self.finalizers

    def with_finalizer(self, name: str) -> "Dashboard":
        if name in self.finalizers:
            return self
        return replace(self, finalizers=self.finalizers + (name,))

    def without_finalizer(self, name: str) -> "Dashboard":
        return replace(self, finalizers=tuple(f for f in self.finalizers if f != name))

    def with_remote(self, remote: RemoteDashboard) -> "Dashboard":
        return replace(self, remote_id=remote.id, remote_title=remote.title)

    def with_condition(self, ctype: str, status: str, reason: str, message: str) -> "Dashboard":
        conditions = copy.deepcopy(list(self.conditions))
        set_condition(conditions, ctype, status, reason, message)
        return replace(self, conditions=tuple(conditions))

    def to_body(self) -> dict:
        body = copy.deepcopy(self.body)
        metadata = body.setdefault("metadata", {})
        metadata["name"] = self.identity.name
        metadata["namespace"] = self.identity.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        metadata["finalizers"] = list(self.finalizers)

        status = body.get("status") or {}
        if self.remote_id:
            status["dashboardId"] = self.remote_id
            status["dashboardTitle"] = self.remote_title
        if self.conditions:
            status["conditions"] = copy.deepcopy(list(self.conditions))
        status["phase"] = self.state.value
        body["status"] = status
        return body


def parse_dashboard(body: Optional[dict]) -> Optional[Dashboard]:
    if not body:
        return None
    return Dashboard.from_body(body)
