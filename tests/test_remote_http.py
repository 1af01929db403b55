import json

import httpx
import pytest

from gourmetflow.core.exceptions import NetworkError, RemoteRejected, SyncTimeout
from gourmetflow.services.remote.base import IDEMPOTENCY_HEADER
from gourmetflow.services.remote.http import HttpRemoteBackend


def make_backend(handler) -> HttpRemoteBackend:
    return HttpRemoteBackend(
        base_url="https://records.test/rest/v1",
        api_key="test-key",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_create_order_sends_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["key"] = request.headers.get(IDEMPOTENCY_HEADER)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": 42})

    backend = make_backend(handler)
    record = await backend.create_order({"order_number": "OFF-123456", "items": []}, "offline_1")
    await backend.aclose()

    assert record.id == "42"
    assert seen == {
        "method": "POST",
        "path": "/rest/v1/orders",
        "key": "offline_1",
        "auth": "Bearer test-key",
        "body": {"order_number": "OFF-123456", "items": []},
    }


@pytest.mark.anyio
async def test_customer_upsert_targets_phone_conflict():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["on_conflict"] = request.url.params.get("on_conflict")
        seen["prefer"] = request.headers.get("Prefer")
        return httpx.Response(200, json=[{"id": "cust_7", "phone": "11999990000"}])

    backend = make_backend(handler)
    record = await backend.upsert_customer({"phone": "11999990000"}, "offline_c1")
    await backend.aclose()

    assert record.id == "cust_7"
    assert seen["on_conflict"] == "restaurant_id,phone"
    assert "merge-duplicates" in seen["prefer"]


@pytest.mark.anyio
async def test_update_without_body_keeps_server_id():
    backend = make_backend(lambda request: httpx.Response(204))
    record = await backend.update_order("srv_1", {"status": "ready"}, "offline_q1")
    await backend.aclose()

    assert record.id == "srv_1"
    assert record.created is False


@pytest.mark.anyio
@pytest.mark.parametrize("status", [408, 429, 500, 503])
async def test_transient_statuses_are_network_errors(status):
    backend = make_backend(lambda request: httpx.Response(status))
    with pytest.raises(NetworkError) as exc:
        await backend.create_order({}, "offline_1")
    await backend.aclose()

    assert exc.value.status_code == status
    assert exc.value.retryable


@pytest.mark.anyio
@pytest.mark.parametrize("status", [400, 401, 404, 409, 422])
async def test_client_errors_are_rejections(status):
    backend = make_backend(lambda request: httpx.Response(status, json={"message": "invalid"}))
    with pytest.raises(RemoteRejected) as exc:
        await backend.create_order({}, "offline_1")
    await backend.aclose()

    assert exc.value.status_code == status
    assert not exc.value.retryable


@pytest.mark.anyio
async def test_timeout_maps_to_sync_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    backend = make_backend(handler)
    with pytest.raises(SyncTimeout):
        await backend.create_order({}, "offline_1")
    await backend.aclose()


@pytest.mark.anyio
async def test_connection_failure_maps_to_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = make_backend(handler)
    with pytest.raises(NetworkError):
        await backend.create_order({}, "offline_1")
    assert not await backend.health_check()
    await backend.aclose()


@pytest.mark.anyio
async def test_response_without_id_is_retryable():
    backend = make_backend(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(NetworkError):
        await backend.create_order({}, "offline_1")
    await backend.aclose()


@pytest.mark.anyio
async def test_fetch_menu_drops_unavailable_items():
    body = {
        "categories": [{"id": "c1", "name": "Pizzas"}],
        "items": [
            {"id": "i1", "name": "Calabresa", "price": 49.9, "category_id": "c1"},
            {"id": "i2", "name": "Portuguesa", "price": 52.0, "category_id": "c1", "is_available": False},
        ],
    }
    backend = make_backend(lambda request: httpx.Response(200, json=body))
    snapshot = await backend.fetch_menu("rest-1")
    await backend.aclose()

    assert [item.id for item in snapshot.items] == ["i1"]
    assert snapshot.categories[0].name == "Pizzas"
