"""
Error taxonomy for the offline store and the sync engine.

    GourmetFlowError
    ├── StorageError      device persistence unavailable or corrupt (fatal, not retried)
    ├── NotFound          requested record does not exist
    └── SyncError
        ├── NetworkError  transient remote failure (retried with backoff)
        │   └── SyncTimeout
        └── RemoteRejected  semantic 4xx rejection (needs manual correction)
"""

from typing import Optional


class GourmetFlowError(Exception):
    """Base class for all application errors."""


class StorageError(GourmetFlowError):
    """The local store could not complete an operation."""


class NotFound(GourmetFlowError):
    """A record lookup came back empty."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class SyncError(GourmetFlowError):
    """A remote submission failed."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkError(SyncError):
    """Connection refused, reset, 5xx, 408 or 429."""


class SyncTimeout(NetworkError):
    """A remote call exceeded its time budget."""


class RemoteRejected(SyncError):
    """The backend refused the payload (validation, conflict, auth)."""

    retryable = False
