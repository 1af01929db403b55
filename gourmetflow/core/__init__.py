"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from gourmetflow.core.config import get_settings, Settings, EnvironmentMode
from gourmetflow.core.exceptions import (
    GourmetFlowError,
    StorageError,
    NotFound,
    SyncError,
    NetworkError,
    SyncTimeout,
    RemoteRejected,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "GourmetFlowError",
    "StorageError",
    "NotFound",
    "SyncError",
    "NetworkError",
    "SyncTimeout",
    "RemoteRejected",
]
