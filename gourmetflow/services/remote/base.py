"""
Remote Backend Abstract Base Class

Defines the interface contract for the relational backend the terminal
syncs into. MockRemoteBackend and HttpRemoteBackend both implement it,
so the sync engine works identically against either.

Error contract:
    - NetworkError / SyncTimeout for transient failures (retried)
    - RemoteRejected for semantic rejections (not retried)

Author: GourmetFlow Team
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from gourmetflow.schemas import MenuSnapshot

IDEMPOTENCY_HEADER = "Idempotency-Key"


@dataclass(frozen=True)
class RemoteRequest:
    """
    A single call to the backend.

    Every operation builds one of these instead of passing loose
    positional arguments around.
    """
    method: str
    path: str
    json: Optional[Any] = None
    params: Optional[dict] = None
    idempotency_key: Optional[str] = None
    headers: dict = field(default_factory=dict)


@dataclass
class RemoteRecord:
    """
    Record returned by the backend after a write.

    Attributes:
        id: Server-assigned id
        created: False when the backend returned an existing record
            (idempotent replay or upsert hit)
        data: Raw response body
    """
    id: str
    created: bool = True
    data: Optional[dict] = None


class BaseRemoteBackend(ABC):
    """Abstract base class for remote record backends."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def create_order(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        """
        Create an order with its line items.

        A repeated call with the same idempotency key returns the record
        created the first time.
        """
        pass

    @abstractmethod
    async def upsert_customer(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        """Create a customer, or overwrite the one with the same phone (last write wins)."""
        pass

    @abstractmethod
    async def update_order(self, server_id: str, changes: dict, idempotency_key: str) -> RemoteRecord:
        """Apply field changes to an order that already exists remotely."""
        pass

    @abstractmethod
    async def fetch_menu(self, restaurant_id: str) -> MenuSnapshot:
        """Read the active categories and available items of a restaurant."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
        return None
