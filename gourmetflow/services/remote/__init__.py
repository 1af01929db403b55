"""
Remote Backend Factory

Returns the mock or HTTP backend based on ENV_MODE.

Usage:
    from gourmetflow.services.remote import get_remote_backend

    backend = get_remote_backend()
    record = await backend.create_order(payload, idempotency_key=order.id)

Environment Switching:
    - ENV_MODE=development → MockRemoteBackend (in-memory)
    - ENV_MODE=staging → HttpRemoteBackend
    - ENV_MODE=production → HttpRemoteBackend

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from functools import lru_cache

from gourmetflow.core.config import get_settings
from gourmetflow.services.remote.base import (
    BaseRemoteBackend,
    RemoteRecord,
    RemoteRequest,
)
from gourmetflow.services.remote.http import HttpRemoteBackend
from gourmetflow.services.remote.mock import MockRemoteBackend

logger = logging.getLogger(__name__)


@lru_cache()
def get_remote_backend() -> BaseRemoteBackend:
    """
    Get the configured remote backend instance.

    The instance is cached so the whole process shares one HTTP
    connection pool (or one in-memory mock).
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Remote Backend: Using MockRemoteBackend (development mode)")
        return MockRemoteBackend(
            failure_rate=0.05,
            min_latency=0.05,
            max_latency=0.2,
        )

    logger.info(f"Remote Backend: Using HttpRemoteBackend ({settings.env_mode.value} mode)")
    return HttpRemoteBackend()


def reset_remote_backend() -> None:
    """Clear the cached backend so the next call rebuilds it."""
    get_remote_backend.cache_clear()
    logger.debug("Remote backend cache cleared")


__all__ = [
    "get_remote_backend",
    "reset_remote_backend",
    "BaseRemoteBackend",
    "RemoteRecord",
    "RemoteRequest",
    "MockRemoteBackend",
    "HttpRemoteBackend",
]
