"""
Chaos Simulation Script

Runs a terminal against the in-memory mock backend while connectivity
flaps, requests fail at random and some responses are lost after the
write was applied. At the end every order must exist exactly once on the
backend and nothing may be left in the local queue.

Run from project root: python scripts/simulate.py --orders 100

Author: GourmetFlow Team
Version: 1.0.0
"""

import argparse
import asyncio
import os
import random
import sys
import tempfile
import time
from collections import Counter
from typing import Any

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gourmetflow.database import LocalDatabase
from gourmetflow.models import QueueItemState
from gourmetflow.services.local_store import LocalStore
from gourmetflow.services.remote.mock import MockRemoteBackend
from gourmetflow.services.sync_driver import SyncDriver
from gourmetflow.services.sync_engine import RetryPolicy, SyncEngine

RESTAURANT_ID = "sim-restaurant"

FIRST_NAMES = ["Ana", "Bruno", "Carla", "Diego", "Elisa", "Felipe", "Gabriela", "Hugo", "Isabela", "João"]
MENU_ITEMS = [
    {"menu_item_id": "item_burger", "name": "X-Burger", "unit_price": 22.90},
    {"menu_item_id": "item_pizza", "name": "Pizza Calabresa", "unit_price": 49.90},
    {"menu_item_id": "item_acai", "name": "Açaí 500ml", "unit_price": 18.00},
    {"menu_item_id": "item_coke", "name": "Coca-Cola Lata", "unit_price": 6.00},
    {"menu_item_id": "offline_custom", "name": "Prato do dia", "unit_price": 27.50},
]


def generate_random_items() -> list[dict]:
    items = []
    for _ in range(random.randint(1, 4)):
        item = random.choice(MENU_ITEMS).copy()
        item["quantity"] = random.randint(1, 3)
        items.append(item)
    return items


async def capture_orders(store: LocalStore, count: int, customers: list[str]) -> list[str]:
    """UI side: keep capturing orders regardless of connectivity."""
    order_ids = []
    for _ in range(count):
        customer_id = random.choice(customers) if customers and random.random() < 0.5 else None
        order = await store.save_offline_order({
            "restaurant_id": RESTAURANT_ID,
            "items": generate_random_items(),
            "customer_id": customer_id,
            "customer_name": random.choice(FIRST_NAMES),
            "delivery_type": random.choice(["delivery", "pickup", "dine_in"]),
            "delivery_fee": random.choice([0.0, 5.0, 7.5]),
            "discount": random.choice([0.0, 0.0, 2.0]),
        })
        order_ids.append(order.id)

        if random.random() < 0.2:
            await store.queue_order_update(order.id, {"status": "preparing"})

        await asyncio.sleep(random.uniform(0, 0.01))
    return order_ids


async def flap_connectivity(driver: SyncDriver, remote: MockRemoteBackend, stop: asyncio.Event) -> int:
    """Network side: toggle online/offline and inject lost responses."""
    flips = 0
    while not stop.is_set():
        await asyncio.sleep(random.uniform(0.01, 0.05))
        online = random.random() < 0.6
        remote.online = online
        if random.random() < 0.1:
            remote.lose_next_responses(1)
        await driver.set_online(online)
        flips += 1
    return flips


async def run_simulation(num_orders: int, num_customers: int, failure_rate: float) -> dict[str, Any]:
    print("\n" + "=" * 70)
    print("🔥 OFFLINE SYNC CHAOS SIMULATION")
    print("=" * 70)
    print(f"📊 Orders: {num_orders}  Customers: {num_customers}  Failure rate: {failure_rate:.0%}")

    with tempfile.TemporaryDirectory() as tmp:
        database = LocalDatabase(f"sqlite+aiosqlite:///{os.path.join(tmp, 'sim.db')}")
        await database.init()
        store = LocalStore(database)
        remote = MockRemoteBackend(failure_rate=failure_rate, max_latency=0.005)
        engine = SyncEngine(
            store,
            remote,
            # Short delays keep the run fast; high cap so nothing fails for good
            policy=RetryPolicy(max_attempts=50, base_delay=0.005, max_delay=0.05),
            request_timeout=1.0,
            lock_path=os.path.join(tmp, "drain.lock"),
        )
        driver = SyncDriver(engine, RESTAURANT_ID, interval_seconds=0.02)

        start_time = time.time()

        customers = []
        for i in range(num_customers):
            customer, _ = await store.save_offline_customer({
                "restaurant_id": RESTAURANT_ID,
                "name": random.choice(FIRST_NAMES),
                "phone": f"1199{i:07d}",
            })
            customers.append(customer.id)

        driver.start()
        stop = asyncio.Event()
        flapper = asyncio.create_task(flap_connectivity(driver, remote, stop))
        order_ids = await capture_orders(store, num_orders, customers)
        stop.set()
        flips = await flapper

        print(f"📡 Connectivity flips: {flips}")
        print("🌐 Final reconnect, draining...")

        remote.online = True
        remote.failure_rate = 0.0
        await driver.set_online(True)
        for _ in range(200):
            if not await store.list_queue(RESTAURANT_ID, [QueueItemState.PENDING, QueueItemState.IN_FLIGHT]):
                break
            await asyncio.sleep(0.06)
            await driver.trigger()

        await driver.stop()
        total_time = round(time.time() - start_time, 2)

        local_orders = await store.list_orders(RESTAURANT_ID, include_synced=True)
        stats = await store.get_stats(RESTAURANT_ID)
        remote_numbers = Counter(order["order_number"] for order in remote.orders.values())
        duplicates = [number for number, seen in remote_numbers.items() if seen > 1]
        missing = [o.order_number for o in local_orders if o.order_number not in remote_numbers]
        await database.dispose()

    print("\n" + "=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"⏱️  Total Time: {total_time}s")
    print(f"📦 Local orders: {len(order_ids)}  Remote orders: {len(remote.orders)}")
    print(f"👤 Remote customers: {len(remote.customers)}")
    print(f"📨 Requests sent: {len(remote.requests)}  Coalesced triggers: {driver.coalesced}")
    print(f"🧾 Queue left: {stats.sync_queue_size}  Failed: {stats.failed_items}")

    ok = not duplicates and not missing and stats.sync_queue_size == 0
    if duplicates:
        print(f"❌ Duplicated on backend: {duplicates[:5]}")
    if missing:
        print(f"❌ Never reached backend: {missing[:5]}")
    print("✅ No duplicates, no lost orders" if ok else "❌ Simulation found problems")
    print("=" * 70)

    return {
        "orders": len(order_ids),
        "remote_orders": len(remote.orders),
        "duplicates": duplicates,
        "missing": missing,
        "ok": ok,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Offline Sync Chaos Simulation")
    parser.add_argument("--orders", type=int, default=50, help="Number of orders")
    parser.add_argument("--customers", type=int, default=10, help="Number of offline customers")
    parser.add_argument("--failure-rate", type=float, default=0.2, help="Random backend failure rate")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    args = parser.parse_args()

    if args.seed is not None:
        random.seed(args.seed)

    result = asyncio.run(run_simulation(args.orders, args.customers, args.failure_rate))
    sys.exit(0 if result["ok"] else 1)
