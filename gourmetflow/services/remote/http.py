"""
HTTP Remote Backend Implementation

Production implementation talking JSON to the records API with httpx.
Used when ENV_MODE=production or ENV_MODE=staging.

Endpoints:
    POST  /orders                      create order (+ items), Idempotency-Key
    POST  /customers                   upsert by (restaurant_id, phone)
    PATCH /orders/{server_id}          apply changes
    GET   /restaurants/{id}/menu       categories + items
    GET   /health

Status mapping:
    2xx                 success
    408, 429, 5xx       NetworkError (retried)
    other 4xx           RemoteRejected (not retried)
    httpx timeout       SyncTimeout
    httpx transport     NetworkError

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from typing import Any, Optional

import httpx

from gourmetflow.core.config import get_settings
from gourmetflow.core.exceptions import NetworkError, RemoteRejected, SyncTimeout
from gourmetflow.schemas import MenuSnapshot
from gourmetflow.services.remote.base import (
    IDEMPOTENCY_HEADER,
    BaseRemoteBackend,
    RemoteRecord,
    RemoteRequest,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 429}


class HttpRemoteBackend(BaseRemoteBackend):
    """
    Records API client.

    Args:
        base_url: API root (defaults to REMOTE_API_URL)
        api_key: Bearer token (defaults to REMOTE_API_KEY)
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport, used by tests
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        api_key = api_key or settings.remote_api_key

        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.remote_api_url,
            headers=headers,
            timeout=httpx.Timeout(timeout or settings.remote_timeout_seconds),
            transport=transport,
        )
        logger.info(f"HttpRemoteBackend initialized ({self._client.base_url})")

    @property
    def provider_name(self) -> str:
        return "http"

    async def _send(self, request: RemoteRequest) -> Any:
        headers = dict(request.headers)
        if request.idempotency_key:
            headers[IDEMPOTENCY_HEADER] = request.idempotency_key

        try:
            response = await self._client.request(
                request.method,
                request.path,
                json=request.json,
                params=request.params,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise SyncTimeout(f"{request.method} {request.path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkError(f"{request.method} {request.path} failed: {e}") from e

        status = response.status_code
        if status in RETRYABLE_STATUS or status >= 500:
            raise NetworkError(
                f"{request.method} {request.path} returned {status}",
                status_code=status,
            )
        if status >= 400:
            raise RemoteRejected(
                f"{request.method} {request.path} rejected ({status}): {response.text[:200]}",
                status_code=status,
            )

        if status == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _record(body: Any, created_default: bool = True) -> RemoteRecord:
        # Some deployments answer with a one-element list
        if isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, dict) or "id" not in body:
            raise NetworkError("Malformed response: missing record id")
        return RemoteRecord(
            id=str(body["id"]),
            created=body.get("created", created_default),
            data=body,
        )

    async def create_order(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        body = await self._send(
            RemoteRequest("POST", "/orders", json=payload, idempotency_key=idempotency_key)
        )
        return self._record(body)

    async def upsert_customer(self, payload: dict, idempotency_key: str) -> RemoteRecord:
        body = await self._send(
            RemoteRequest(
                "POST",
                "/customers",
                json=payload,
                params={"on_conflict": "restaurant_id,phone"},
                idempotency_key=idempotency_key,
                headers={"Prefer": "resolution=merge-duplicates,return=representation"},
            )
        )
        return self._record(body)

    async def update_order(self, server_id: str, changes: dict, idempotency_key: str) -> RemoteRecord:
        body = await self._send(
            RemoteRequest(
                "PATCH",
                f"/orders/{server_id}",
                json=changes,
                idempotency_key=idempotency_key,
            )
        )
        if body is None:
            return RemoteRecord(id=server_id, created=False)
        return self._record(body, created_default=False)

    async def fetch_menu(self, restaurant_id: str) -> MenuSnapshot:
        body = await self._send(RemoteRequest("GET", f"/restaurants/{restaurant_id}/menu"))
        body = body or {}
        return MenuSnapshot(
            restaurant_id=restaurant_id,
            categories=body.get("categories", []),
            items=[item for item in body.get("items", []) if item.get("is_available", True)],
        )

    async def health_check(self) -> bool:
        try:
            await self._send(RemoteRequest("GET", "/health"))
            return True
        except (NetworkError, RemoteRejected) as e:
            logger.warning(f"Remote health check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
