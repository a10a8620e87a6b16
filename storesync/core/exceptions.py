"""
Exception types shared across the sync engine.
"""

from typing import Any, Optional


class StoreSyncError(Exception):
    """Base class for sync engine errors."""


class ConfigurationError(StoreSyncError):
    """Missing or invalid configuration. Raised before any phase runs."""


class RemoteRequestError(StoreSyncError):
    """A request to the store API failed (non-2xx status or transport error)."""

    def __init__(
        self,
        method: str,
        path: str,
        status_code: Optional[int] = None,
        body: Any = None,
        reason: Optional[str] = None
    ):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body
        self.reason = reason

        if status_code is not None:
            message = f"{method} {path} failed with status {status_code}"
        else:
            message = f"{method} {path} failed: {reason or 'connection error'}"
        super().__init__(message)


class SyncInProgressError(StoreSyncError):
    """Another run already holds the sync lock."""

    def __init__(self, owner: str, acquired_at: str):
        self.owner = owner
        self.acquired_at = acquired_at
        super().__init__(f"Sync already running (owner={owner}, since {acquired_at})")


class SyncDeadlineExceeded(StoreSyncError):
    """The run deadline passed while a phase was still processing items."""

    def __init__(self, result):
        self.result = result
        super().__init__(f"Run deadline exceeded during phase '{result.name}'")
