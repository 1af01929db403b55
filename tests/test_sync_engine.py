import asyncio

import pytest
from filelock import FileLock

from gourmetflow.core.exceptions import NetworkError, NotFound, RemoteRejected
from gourmetflow.models import QueueItemState, SyncAction
from gourmetflow.schemas import MenuSnapshot
from gourmetflow.services import ids
from gourmetflow.services.local_store import RecordKind
from gourmetflow.services.sync_engine import RetryPolicy, SyncEngine
from tests.conftest import RESTAURANT_ID

STALL = 1.0  # longer than the engine's request timeout


def test_retry_policy_backoff_is_capped():
    policy = RetryPolicy(max_attempts=5, base_delay=2, max_delay=60)
    assert [policy.delay_for(n) for n in range(1, 8)] == [2, 4, 8, 16, 32, 60, 60]
    assert not policy.exhausted(4)
    assert policy.exhausted(5)


@pytest.mark.anyio
async def test_offline_order_scenario_syncs_to_server_id(store, engine, remote, order_data, monkeypatch):
    monkeypatch.setattr(ids, "generate_offline_order_number", lambda: "OFF-123456")
    order = await store.save_offline_order(order_data(discount=0.0))
    assert (order.subtotal, order.total) == (25.0, 28.0)

    report = await engine.drain(RESTAURANT_ID)

    assert report.synced == 1
    stored = await store.get(RecordKind.ORDERS, order.id)
    assert stored.synced
    assert stored.server_id == "srv_1"
    assert stored.order_number == "OFF-123456"
    assert remote.orders["srv_1"]["order_number"] == "OFF-123456"
    assert remote.orders["srv_1"]["total"] == 28.0
    assert remote.requests[0].idempotency_key == order.id
    assert await store.list_queue(RESTAURANT_ID) == []


@pytest.mark.anyio
async def test_three_timeouts_then_success(store, engine, remote, clock, order_data):
    order = await store.save_offline_order(order_data())
    remote.fail_next(STALL, STALL, STALL)

    for _ in range(3):
        report = await engine.drain(RESTAURANT_ID)
        assert report.retried == 1
        assert "No response" in report.errors[0]
        clock.advance(seconds=60)

    report = await engine.drain(RESTAURANT_ID)
    assert report.synced == 1

    stored = await store.get(RecordKind.ORDERS, order.id)
    assert stored.synced
    assert stored.sync_attempts == 4
    assert len(remote.orders) == 1


@pytest.mark.anyio
async def test_retry_cap_reached_exactly(store, engine, remote, clock, order_data):
    await store.save_offline_order(order_data())
    remote.fail_next(*[NetworkError("connection refused") for _ in range(10)])

    for attempt in range(1, 6):
        await engine.drain(RESTAURANT_ID)
        (item,) = await store.list_queue(RESTAURANT_ID)
        assert item.attempts == attempt
        expected = QueueItemState.FAILED if attempt == 5 else QueueItemState.PENDING
        assert item.state == expected
        clock.advance(seconds=120)

    await engine.drain(RESTAURANT_ID)
    assert remote.count("POST", "/orders") == 5
    assert (await store.get_stats(RESTAURANT_ID)).needs_attention


@pytest.mark.anyio
async def test_retry_waits_for_backoff(store, engine, remote, clock, order_data):
    await store.save_offline_order(order_data())
    remote.fail_next(NetworkError("reset"))

    await engine.drain(RESTAURANT_ID)
    report = await engine.drain(RESTAURANT_ID)
    assert report.deferred == 1
    assert remote.count("POST", "/orders") == 1

    clock.advance(seconds=2)
    report = await engine.drain(RESTAURANT_ID)
    assert report.synced == 1


@pytest.mark.anyio
async def test_lost_response_does_not_duplicate(store, engine, remote, clock, order_data):
    order = await store.save_offline_order(order_data())
    remote.lose_next_responses(1)

    first = await engine.drain(RESTAURANT_ID)
    assert first.retried == 1
    assert len(remote.orders) == 1

    clock.advance(seconds=2)
    second = await engine.drain(RESTAURANT_ID)
    assert second.synced == 1

    assert remote.count("POST", "/orders") == 2
    assert len(remote.orders_for_key(order.id)) == 1
    assert len(remote.orders) == 1


@pytest.mark.anyio
async def test_replayed_submission_returns_existing_record(remote):
    payload = {"order_number": "OFF-1", "items": [{"name": "X"}]}
    first = await remote.create_order(payload, idempotency_key="offline_1")
    second = await remote.create_order(payload, idempotency_key="offline_1")

    assert first.id == second.id
    assert second.created is False
    assert len(remote.orders) == 1


@pytest.mark.anyio
async def test_update_never_sent_before_create(store, engine, remote, clock, order_data):
    order = await store.save_offline_order(order_data())
    await store.queue_order_update(order.id, {"status": "preparing"})
    remote.fail_next(NetworkError("down"))

    report = await engine.drain(RESTAURANT_ID)
    assert report.retried == 1
    assert report.deferred == 1
    assert remote.count("PATCH", "/orders") == 0

    clock.advance(seconds=2)
    report = await engine.drain(RESTAURANT_ID)
    assert report.synced == 2

    methods = [(r.method, r.path) for r in remote.requests]
    assert methods == [("POST", "/orders"), ("POST", "/orders"), ("PATCH", "/orders/srv_1")]
    assert remote.orders["srv_1"]["status"] == "preparing"


@pytest.mark.anyio
async def test_failing_entity_does_not_block_others(store, engine, remote, order_data):
    bad = await store.save_offline_order(order_data())
    good = await store.save_offline_order(order_data())
    remote.fail_next(RemoteRejected("invalid delivery address", status_code=422))

    report = await engine.drain(RESTAURANT_ID)
    assert report.failed == 1
    assert report.synced == 1

    (failed,) = await store.list_failed(RESTAURANT_ID)
    assert failed.entity_id == bad.id
    assert failed.attempts == 1
    assert "invalid delivery address" in failed.last_error
    assert (await store.get(RecordKind.ORDERS, good.id)).synced

    await store.retry_failed(failed.id)
    report = await engine.drain(RESTAURANT_ID)
    assert report.synced == 1
    assert (await store.get(RecordKind.ORDERS, bad.id)).server_id == "srv_2"


@pytest.mark.anyio
async def test_failed_create_blocks_its_update(store, engine, remote, order_data):
    order = await store.save_offline_order(order_data())
    await store.queue_order_update(order.id, {"status": "cancelled"})
    remote.fail_next(RemoteRejected("rejected", status_code=400))

    await engine.drain(RESTAURANT_ID)
    report = await engine.drain(RESTAURANT_ID)

    assert report.processed == 0
    assert remote.count("PATCH", "/orders") == 0
    states = [item.state for item in await store.list_queue(RESTAURANT_ID)]
    assert states == [QueueItemState.FAILED, QueueItemState.PENDING]


@pytest.mark.anyio
async def test_order_waits_for_offline_customer(store, engine, remote, clock, order_data):
    customer, _ = await store.save_offline_customer(
        {"restaurant_id": RESTAURANT_ID, "name": "Maria", "phone": "11999990000"}
    )
    order = await store.save_offline_order(order_data(customer_id=customer.id))
    remote.fail_next(NetworkError("down"))

    report = await engine.drain(RESTAURANT_ID)
    assert report.retried == 1 and report.deferred == 1
    assert remote.count("POST", "/orders") == 0

    clock.advance(seconds=2)
    await engine.drain(RESTAURANT_ID)

    stored_customer = await store.get(RecordKind.CUSTOMERS, customer.id)
    stored_order = await store.get(RecordKind.ORDERS, order.id)
    assert stored_customer.server_id == "srv_1"
    assert stored_order.server_id == "srv_2"
    assert remote.orders["srv_2"]["customer_id"] == "srv_1"


@pytest.mark.anyio
async def test_local_menu_items_sent_without_reference(store, engine, remote, order_data):
    items = [
        {"menu_item_id": "offline_1700000000000_abcdefghi", "name": "Prato do dia", "quantity": 1, "unit_price": 27.5},
        {"menu_item_id": "item_coke", "name": "Coca-Cola", "quantity": 1, "unit_price": 6.0},
    ]
    await store.save_offline_order(order_data(items=items))

    await engine.drain(RESTAURANT_ID)

    sent = remote.orders["srv_1"]["items"]
    assert [line["menu_item_id"] for line in sent] == [None, "item_coke"]


@pytest.mark.anyio
async def test_customer_phone_conflict_is_last_write_wins(store, engine, remote):
    existing = await remote.upsert_customer(
        {"name": "Old Name", "phone": "11977776666", "restaurant_id": RESTAURANT_ID, "cpf": None, "address": None},
        idempotency_key="other-device",
    )
    customer, _ = await store.save_offline_customer(
        {"restaurant_id": RESTAURANT_ID, "name": "New Name", "phone": "11977776666"}
    )

    await engine.drain(RESTAURANT_ID)

    stored = await store.get(RecordKind.CUSTOMERS, customer.id)
    assert stored.server_id == existing.id
    assert remote.find_customer(RESTAURANT_ID, "11977776666")["name"] == "New Name"
    assert len(remote.customers) == 1


@pytest.mark.anyio
async def test_concurrent_drains_run_once(store, engine, remote, order_data):
    await store.save_offline_order(order_data())
    remote.fail_next(0.05)  # slow but within the timeout

    first, second = await asyncio.gather(engine.drain(RESTAURANT_ID), engine.drain(RESTAURANT_ID))

    assert sorted([first.skipped, second.skipped]) == [False, True]
    assert remote.count("POST", "/orders") == 1
    assert not engine.is_draining


@pytest.mark.anyio
async def test_drain_skipped_while_another_process_holds_lock(store, engine, remote, order_data, tmp_path):
    await store.save_offline_order(order_data())
    other_process = FileLock(str(tmp_path / "drain.lock"))
    other_process.acquire()
    try:
        report = await engine.drain(RESTAURANT_ID)
    finally:
        other_process.release()

    assert report.skipped
    assert remote.requests == []
    assert (await engine.drain(RESTAURANT_ID)).synced == 1


@pytest.mark.anyio
async def test_lock_released_when_drain_raises(store, engine, remote, order_data, monkeypatch):
    await store.save_offline_order(order_data())

    async def broken(restaurant_id=None):
        raise RuntimeError("disk gone")

    monkeypatch.setattr(store, "reset_in_flight", broken)
    with pytest.raises(RuntimeError):
        await engine.drain(RESTAURANT_ID)
    monkeypatch.undo()

    assert not engine.is_draining
    assert (await engine.drain(RESTAURANT_ID)).synced == 1


@pytest.mark.anyio
async def test_item_stranded_in_flight_is_recovered(store, engine, remote, order_data):
    order = await store.save_offline_order(order_data())
    (item,) = await store.list_queue(RESTAURANT_ID)
    await store.claim_queue_item(item.id)

    report = await engine.drain(RESTAURANT_ID)

    assert report.synced == 1
    assert (await store.get(RecordKind.ORDERS, order.id)).synced


@pytest.mark.anyio
async def test_unexpected_error_is_recorded_and_retried(store, engine, remote, clock, order_data):
    await store.save_offline_order(order_data())
    remote.fail_next(KeyError("boom"))

    report = await engine.drain(RESTAURANT_ID)

    assert report.retried == 1
    (item,) = await store.list_queue(RESTAURANT_ID)
    assert item.state == QueueItemState.PENDING
    assert item.last_error.startswith("KeyError")


@pytest.mark.anyio
async def test_orphaned_queue_item_is_failed(store, engine):
    await store.enqueue(SyncAction.CREATE_ORDER, "orders", "offline_gone", RESTAURANT_ID)

    report = await engine.drain(RESTAURANT_ID)

    assert report.failed == 1
    (item,) = await store.list_failed(RESTAURANT_ID)
    assert "offline_gone" in item.last_error


@pytest.mark.anyio
async def test_drain_records_last_sync(store, engine, order_data, clock):
    assert engine.last_sync_time is None
    await engine.drain(RESTAURANT_ID)
    assert engine.last_sync_time == clock.now
    assert engine.last_report.processed == 0


@pytest.mark.anyio
async def test_menu_read_through_with_cache_fallback(engine, remote):
    remote.set_menu(MenuSnapshot(
        restaurant_id=RESTAURANT_ID,
        categories=[{"id": "c1", "name": "Lanches"}],
        items=[{"id": "i1", "name": "X-Burger", "price": 22.9, "category_id": "c1"}],
    ))

    fresh = await engine.load_menu(RESTAURANT_ID)
    assert not fresh.from_cache
    assert fresh.items[0].name == "X-Burger"

    remote.online = False
    cached = await engine.load_menu(RESTAURANT_ID)
    assert cached.from_cache
    assert cached.items[0].price == 22.9
    assert cached.cached_at is not None


@pytest.mark.anyio
async def test_menu_unavailable_offline_without_cache(engine, remote):
    remote.online = False
    assert await engine.refresh_menu(RESTAURANT_ID) is None
    with pytest.raises(NotFound):
        await engine.load_menu(RESTAURANT_ID)


@pytest.mark.anyio
async def test_engine_without_file_lock(store, remote, clock, order_data):
    engine = SyncEngine(store, remote, clock=clock)
    await store.save_offline_order(order_data())
    assert (await engine.drain(RESTAURANT_ID)).synced == 1
