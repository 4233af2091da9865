"""
Error taxonomy for the dashboard reconciler.

Every failure that reaches the kopf handlers is a ReconcileError and is
retried with backoff. The concrete type decides what else happens:

  ConflictError            stale resourceVersion → re-fetch and reconcile again
  RemoteMismatchError      status already records another remote dashboard
  RemoteUnavailableError   remote API / transport failure
  MalformedResponseError   unparseable remote payload
  StoreError               Kubernetes API failure
  DeadlineExceededError    reconcile ran out of time
  ConfigurationError       remote API credentials missing

Only ConflictError skips the Ready=False condition write.

ResourceNotFoundError is not a failure: the resource is gone, which is a
valid terminal state.
"""
from typing import Optional


class ReconcileError(Exception):
    """Base class for errors surfaced to the kopf handlers."""

    reason = "ReconcileError"


class ResourceNotFoundError(ReconcileError):
    reason = "NotFound"


class ConflictError(ReconcileError):
    reason = "Conflict"


class RemoteMismatchError(ConflictError):
    reason = "RemoteMismatch"


class StoreError(ReconcileError):
    reason = "StoreUnavailable"


class RemoteUnavailableError(ReconcileError):
    reason = "RemoteUnavailable"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(RemoteUnavailableError):
    reason = "MalformedResponse"


class DeadlineExceededError(ReconcileError):
    reason = "DeadlineExceeded"


class ConfigurationError(ReconcileError):
    reason = "ConfigurationMissing"
