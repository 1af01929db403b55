import asyncio

import pytest

from gourmetflow.services.local_store import RecordKind
from gourmetflow.services.sync_driver import SyncDriver
from tests.conftest import RESTAURANT_ID


@pytest.mark.anyio
async def test_trigger_is_ignored_while_offline(store, engine, remote, order_data):
    driver = SyncDriver(engine, RESTAURANT_ID)
    await store.save_offline_order(order_data())

    assert await driver.trigger() is None
    assert remote.requests == []


@pytest.mark.anyio
async def test_going_online_drains_and_refreshes_menu(store, engine, remote, order_data):
    driver = SyncDriver(engine, RESTAURANT_ID)
    order = await store.save_offline_order(order_data())

    report = await driver.set_online(True)

    assert driver.online
    assert report.synced == 1
    assert (await store.get(RecordKind.ORDERS, order.id)).synced
    assert remote.count("GET", "/restaurants/") == 1
    assert await store.get_menu_cache(RESTAURANT_ID)


@pytest.mark.anyio
async def test_repeated_online_signal_does_not_drain_again(engine, remote):
    driver = SyncDriver(engine, RESTAURANT_ID, refresh_menu_on_reconnect=False)

    assert await driver.set_online(True) is not None
    assert await driver.set_online(True) is None
    assert await driver.set_online(False) is None
    assert not driver.online


@pytest.mark.anyio
async def test_triggers_during_a_drain_are_coalesced(store, engine, remote, order_data):
    driver = SyncDriver(engine, RESTAURANT_ID, online=True)
    await store.save_offline_order(order_data())
    remote.fail_next(0.05)

    first, second = await asyncio.gather(driver.trigger(), driver.trigger())

    assert sorted([first.skipped, second.skipped]) == [False, True]
    assert driver.coalesced == 1
    assert remote.count("POST", "/orders") == 1


@pytest.mark.anyio
async def test_periodic_timer_drains_while_online(store, engine, order_data):
    driver = SyncDriver(engine, RESTAURANT_ID, interval_seconds=0.01, online=True)
    order = await store.save_offline_order(order_data())

    driver.start()
    assert driver.running
    try:
        for _ in range(100):
            if (await store.get(RecordKind.ORDERS, order.id)).synced:
                break
            await asyncio.sleep(0.02)
    finally:
        await driver.stop()

    assert (await store.get(RecordKind.ORDERS, order.id)).synced
    assert not driver.running


@pytest.mark.anyio
async def test_periodic_timer_survives_errors(engine, monkeypatch):
    driver = SyncDriver(engine, RESTAURANT_ID, interval_seconds=0.01, online=True)
    calls = []

    async def flaky_drain(restaurant_id):
        calls.append(restaurant_id)
        raise RuntimeError("store locked")

    monkeypatch.setattr(engine, "drain", flaky_drain)

    driver.start()
    await asyncio.sleep(0.1)
    await driver.stop()

    assert len(calls) >= 2
