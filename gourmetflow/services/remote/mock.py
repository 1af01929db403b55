"""
Mock Remote Backend Implementation

In-memory stand-in for the records API. Used in development mode and by
the test-suite to:
    - Run the terminal with no backend at all
    - Exercise retries through scripted failures and stalls
    - Verify idempotency: records are keyed by idempotency key, so a
      replayed submission returns the original record

Server ids are sequential (srv_1, srv_2, ...).

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging
import random
from collections import deque
from typing import Optional, Union

from gourmetflow.core.exceptions import NetworkError, RemoteRejected
from gourmetflow.schemas import MenuSnapshot
from gourmetflow.services.remote.base import (
    BaseRemoteBackend,
    RemoteRecord,
    RemoteRequest,
)

logger = logging.getLogger(__name__)

# A scripted outcome is an exception to raise or a number of seconds to stall
Scripted = Union[Exception, float]


class MockRemoteBackend(BaseRemoteBackend):
    """
    Mock implementation of the remote backend.

    Attributes:
        failure_rate: Probability of a random NetworkError (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        orders: server_id -> stored order
        customers: server_id -> stored customer
        requests: Every request received, in order

    Example:
        >>> backend = MockRemoteBackend()
        >>> backend.fail_next(NetworkError("down"), NetworkError("down"))
        >>> await backend.create_order({...}, "offline_1")  # raises
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        id_prefix: str = "srv_",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.id_prefix = id_prefix

        self.orders: dict[str, dict] = {}
        self.customers: dict[str, dict] = {}
        self.menus: dict[str, MenuSnapshot] = {}
        self.requests: list[RemoteRequest] = []

        self._by_key: dict[str, str] = {}
        self._counter = 0
        self._scripted: deque = deque()
        self._lose_responses = 0
        self.online = True

        logger.info(
            f"MockRemoteBackend initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    # =========================================================================
    # TEST CONTROLS
    # =========================================================================

    def fail_next(self, *outcomes: Scripted) -> None:
        """Queue outcomes consumed one per call before the request is applied."""
        self._scripted.extend(outcomes)

    def lose_next_responses(self, count: int = 1) -> None:
        """Apply the next writes, then raise NetworkError as if the reply was lost."""
        self._lose_responses += count

    def set_menu(self, snapshot: MenuSnapshot) -> None:
        self.menus[snapshot.restaurant_id] = snapshot

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _next_id(self) -> str:
        self._counter += 1
        return f"{self.id_prefix}{self._counter}"

    async def _before(self, request: RemoteRequest) -> None:
        self.requests.append(request)

        if self.max_latency:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

        if not self.online:
            raise NetworkError("Backend unreachable (simulated offline)")

        if self._scripted:
            outcome = self._scripted.popleft()
            if isinstance(outcome, Exception):
                logger.debug(f"Mock: scripted failure for {request.method} {request.path}: {outcome}")
                raise outcome
            await asyncio.sleep(float(outcome))

        if self.failure_rate and random.random() < self.failure_rate:
            raise NetworkError("Simulated transient failure", status_code=503)

    def _after_write(self) -> None:
        if self._lose_responses:
            self._lose_responses -= 1
            raise NetworkError("Connection reset after write (simulated)")

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def create_order(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        request = RemoteRequest("POST", "/orders", json=payload, idempotency_key=idempotency_key)
        await self._before(request)

        if not payload.get("items"):
            raise RemoteRejected("Order must contain at least one item", status_code=422)

        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            logger.debug(f"Mock: idempotent replay of {idempotency_key} -> {existing}")
            self._after_write()
            return RemoteRecord(id=existing, created=False, data=self.orders[existing])

        server_id = self._next_id()
        self.orders[server_id] = {**payload, "id": server_id}
        self._by_key[idempotency_key] = server_id
        logger.info(f"Mock: order {payload.get('order_number')} created as {server_id}")

        self._after_write()
        return RemoteRecord(id=server_id, created=True, data=self.orders[server_id])

    async def upsert_customer(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        request = RemoteRequest("POST", "/customers", json=payload, idempotency_key=idempotency_key)
        await self._before(request)

        existing = self._by_key.get(idempotency_key)
        if existing is None:
            existing = next(
                (
                    server_id for server_id, customer in self.customers.items()
                    if customer["phone"] == payload["phone"]
                    and customer["restaurant_id"] == payload["restaurant_id"]
                ),
                None,
            )

        if existing is not None:
            # Last write wins on the phone key
            self.customers[existing] = {**self.customers[existing], **payload, "id": existing}
            self._by_key[idempotency_key] = existing
            self._after_write()
            return RemoteRecord(id=existing, created=False, data=self.customers[existing])

        server_id = self._next_id()
        self.customers[server_id] = {**payload, "id": server_id}
        self._by_key[idempotency_key] = server_id
        self._after_write()
        return RemoteRecord(id=server_id, created=True, data=self.customers[server_id])

    async def update_order(self, server_id: str, changes: dict, idempotency_key: str) -> RemoteRecord:
        request = RemoteRequest(
            "PATCH", f"/orders/{server_id}", json=changes, idempotency_key=idempotency_key
        )
        await self._before(request)

        if server_id not in self.orders:
            raise RemoteRejected(f"Order {server_id} does not exist", status_code=404)

        self.orders[server_id].update(changes)
        self._by_key[idempotency_key] = server_id
        self._after_write()
        return RemoteRecord(id=server_id, created=False, data=self.orders[server_id])

    async def fetch_menu(self, restaurant_id: str) -> MenuSnapshot:
        await self._before(RemoteRequest("GET", f"/restaurants/{restaurant_id}/menu"))
        return self.menus.get(restaurant_id, MenuSnapshot(restaurant_id=restaurant_id))

    async def health_check(self) -> bool:
        return self.online

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def orders_for_key(self, idempotency_key: str) -> list[dict]:
        server_id = self._by_key.get(idempotency_key)
        return [self.orders[server_id]] if server_id in self.orders else []

    def count(self, method: str, path_prefix: str) -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and r.path.startswith(path_prefix)
        )

    def find_customer(self, restaurant_id: str, phone: str) -> Optional[dict]:
        for customer in self.customers.values():
            if customer["phone"] == phone and customer["restaurant_id"] == restaurant_id:
                return customer
        return None
