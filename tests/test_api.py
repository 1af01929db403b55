import pytest
from httpx import ASGITransport, AsyncClient

from gourmetflow import main
from gourmetflow.core.config import Settings
from gourmetflow.main import app, get_payment, get_whatsapp
from gourmetflow.runtime import SyncRuntime, create_runtime
from gourmetflow.schemas import MenuSnapshot
from gourmetflow.services.payment import MockPaymentGateway
from gourmetflow.services.remote.mock import MockRemoteBackend
from gourmetflow.services.sync_driver import SyncDriver
from gourmetflow.services.whatsapp import MockWhatsAppService
from tests.conftest import RESTAURANT_ID


@pytest.fixture
def whatsapp():
    return MockWhatsAppService(failure_rate=0.0)


@pytest.fixture
def gateway():
    return MockPaymentGateway(failure_rate=0.0)


@pytest.fixture
async def client(database, store, remote, engine, whatsapp, gateway, tmp_path):
    settings = Settings(restaurant_id=RESTAURANT_ID, data_directory=str(tmp_path))
    app.state.runtime = SyncRuntime(
        settings=settings,
        database=database,
        store=store,
        remote=remote,
        engine=engine,
        driver=SyncDriver(engine, RESTAURANT_ID, refresh_menu_on_reconnect=False),
    )
    app.dependency_overrides[get_whatsapp] = lambda: whatsapp
    app.dependency_overrides[get_payment] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    del app.state.runtime


@pytest.mark.anyio
async def test_health_reports_offline_backend(client, remote):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "operational"

    remote.online = False
    resp = await client.get("/health")
    body = resp.json()
    assert body["status"] == "offline"
    assert body["local_store"] == "healthy"
    assert body["remote_backend"] == "unreachable"


@pytest.mark.anyio
async def test_capture_order_offline_then_sync(client, order_data, remote):
    resp = await client.post("/offline/orders", json=order_data())
    assert resp.status_code == 201
    order = resp.json()
    assert order["total"] == 28.0
    assert order["synced"] is False

    resp = await client.get("/offline/orders")
    assert [o["id"] for o in resp.json()] == [order["id"]]

    resp = await client.post("/sync/now")
    assert resp.status_code == 409

    resp = await client.post("/sync/connectivity", json={"online": True})
    status = resp.json()
    assert status["online"] is True
    assert status["stats"]["pending_orders"] == 0
    assert status["last_sync_time"] is not None

    assert (await client.get("/offline/orders")).json() == []
    resp = await client.get("/offline/orders", params={"include_synced": True})
    assert resp.json()[0]["server_id"] == "srv_1"
    assert len(remote.orders) == 1


@pytest.mark.anyio
async def test_invalid_order_is_rejected(client, order_data):
    resp = await client.post("/offline/orders", json=order_data(items=[]))
    assert resp.status_code == 422

    resp = await client.post("/offline/orders", json=order_data(delivery_fee=0, discount=500))
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_update_queues_change(client, order_data):
    order = (await client.post("/offline/orders", json=order_data())).json()

    resp = await client.patch(f"/offline/orders/{order['id']}", json={"status": "preparing"})
    assert resp.status_code == 200
    assert resp.json()["action"] == "update_order"
    assert resp.json()["data"] == {"status": "preparing"}

    resp = await client.patch(f"/offline/orders/{order['id']}", json={})
    assert resp.status_code == 422

    resp = await client.patch("/offline/orders/offline_missing", json={"status": "ready"})
    assert resp.status_code == 404


@pytest.mark.anyio
async def test_customer_capture_dedups_by_phone(client):
    payload = {"restaurant_id": RESTAURANT_ID, "name": "Ana", "phone": "11911112222"}

    first = await client.post("/offline/customers", json=payload)
    second = await client.post("/offline/customers", json=payload)
    assert first.status_code == 201 and first.json()["created"] is True
    assert second.status_code == 200 and second.json()["created"] is False

    resp = await client.get("/offline/customers/11911112222")
    assert resp.json()["name"] == "Ana"
    assert (await client.get("/offline/customers/11900000000")).status_code == 404


@pytest.mark.anyio
async def test_menu_served_from_cache_while_offline(client, remote):
    assert (await client.get(f"/menu/{RESTAURANT_ID}")).status_code == 404

    remote.set_menu(MenuSnapshot(
        restaurant_id=RESTAURANT_ID,
        items=[{"id": "i1", "name": "Açaí", "price": 18.0}],
    ))
    await client.post("/sync/connectivity", json={"online": True})
    fresh = (await client.get(f"/menu/{RESTAURANT_ID}")).json()
    assert fresh["from_cache"] is False

    await client.post("/sync/connectivity", json={"online": False})
    cached = (await client.get(f"/menu/{RESTAURANT_ID}")).json()
    assert cached["from_cache"] is True
    assert cached["items"][0]["name"] == "Açaí"


@pytest.mark.anyio
async def test_failed_items_listed_and_retried(client, order_data, remote):
    from gourmetflow.core.exceptions import RemoteRejected

    await client.post("/offline/orders", json=order_data())
    remote.fail_next(RemoteRejected("invalid", status_code=422))
    await client.post("/sync/connectivity", json={"online": True})

    failed = (await client.get("/sync/failed")).json()
    assert len(failed) == 1
    assert failed[0]["state"] == "failed"
    assert (await client.get("/sync/status")).json()["stats"]["needs_attention"] is True

    resp = await client.post(f"/sync/failed/{failed[0]['id']}/retry")
    assert resp.json()["state"] == "pending"
    assert (await client.post(f"/sync/failed/{failed[0]['id']}/retry")).status_code == 409

    report = (await client.post("/sync/now")).json()
    assert report["synced"] == 1


@pytest.mark.anyio
async def test_notify_customer_over_whatsapp(client, order_data, whatsapp):
    order = (await client.post("/offline/orders", json=order_data())).json()

    resp = await client.post(
        f"/orders/{order['id']}/notify",
        json={"status": "out_for_delivery", "motoboy": "Carlos"},
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    (sent,) = whatsapp.sent
    assert sent["phone"] == "11999990000"
    assert order["order_number"] in sent["message"]
    assert "Carlos" in sent["message"]


@pytest.mark.anyio
async def test_notify_requires_customer_phone(client, order_data):
    order = (await client.post("/offline/orders", json=order_data(customer_phone=None))).json()
    resp = await client.post(f"/orders/{order['id']}/notify", json={"status": "ready"})
    assert resp.status_code == 422


@pytest.mark.anyio
async def test_charge_records_payment_method(client, order_data, gateway, store):
    order = (await client.post("/offline/orders", json=order_data())).json()

    resp = await client.post(f"/orders/{order['id']}/charge", json={"method": "pix"})
    assert resp.status_code == 200
    result = resp.json()
    assert result["amount"] == 28.0
    assert result["status"] == "pending"

    queue = await store.list_queue(RESTAURANT_ID)
    assert queue[-1].data == {"payment_method": "pix"}


@pytest.mark.anyio
async def test_cash_cannot_be_charged_online(client, order_data):
    order = (await client.post("/offline/orders", json=order_data())).json()
    resp = await client.post(f"/orders/{order['id']}/charge", json={"method": "cash"})
    assert resp.status_code == 402


class ClosingRemote(MockRemoteBackend):
    closed = False

    async def aclose(self) -> None:
        self.closed = True


class ClosingWhatsApp(MockWhatsAppService):
    closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_shutdown_closes_network_clients(tmp_path, monkeypatch):
    remote = ClosingRemote()
    whatsapp = ClosingWhatsApp(failure_rate=0.0)
    settings = Settings(restaurant_id=RESTAURANT_ID, data_directory=str(tmp_path))

    async def build_runtime(_settings):
        return await create_runtime(settings, remote=remote)

    monkeypatch.setattr(main, "create_runtime", build_runtime)
    monkeypatch.setattr(main, "get_whatsapp_service", lambda: whatsapp)

    async with main.lifespan(app):
        assert app.state.runtime.remote is remote
        assert not remote.closed and not whatsapp.closed

    assert remote.closed
    assert whatsapp.closed
    del app.state.runtime
