"""Shared fixtures: a temporary on-device database, a frozen clock and the mock backend."""
import os
from datetime import datetime, timedelta

import pytest

os.environ.setdefault("ENV_MODE", "development")

from gourmetflow.database import LocalDatabase
from gourmetflow.services.local_store import LocalStore
from gourmetflow.services.remote.mock import MockRemoteBackend
from gourmetflow.services.sync_engine import RetryPolicy, SyncEngine

RESTAURANT_ID = "rest-1"


class FakeClock:
    """Naive UTC clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 2, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.now += timedelta(seconds=seconds, **kwargs)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(tmp_path):
    db = LocalDatabase(f"sqlite+aiosqlite:///{tmp_path / 'offline.db'}")
    await db.init()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def store(database, clock) -> LocalStore:
    return LocalStore(database, clock=clock)


@pytest.fixture
def remote() -> MockRemoteBackend:
    return MockRemoteBackend()


@pytest.fixture
def engine(store, remote, clock, tmp_path) -> SyncEngine:
    return SyncEngine(
        store,
        remote,
        policy=RetryPolicy(max_attempts=5, base_delay=2, max_delay=60),
        request_timeout=0.1,
        lock_path=tmp_path / "drain.lock",
        clock=clock,
    )


@pytest.fixture
def order_data():
    """Factory for order capture payloads (2 x 10.00 + 1 x 5.00)."""

    def build(**overrides) -> dict:
        data = {
            "restaurant_id": RESTAURANT_ID,
            "items": [
                {"menu_item_id": "item_burger", "name": "X-Burger", "quantity": 2, "unit_price": 10.0},
                {"menu_item_id": "item_soda", "name": "Refrigerante", "quantity": 1, "unit_price": 5.0},
            ],
            "customer_name": "Maria",
            "customer_phone": "11999990000",
            "delivery_type": "delivery",
            "delivery_fee": 3.0,
        }
        data.update(overrides)
        return data

    return build
