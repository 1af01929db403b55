"""
WhatsApp Bridge Service

Production implementation talking to the WhatsApp bridge process over
HTTP with httpx.

Bridge API:
    POST /send          {phone, message, deviceId}
    POST /notify-order  {orderId, status, customerPhone, orderNumber, motoboy}
    GET  /health

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from typing import Optional

import httpx

from gourmetflow.core.config import get_settings
from gourmetflow.services.whatsapp.base import (
    BaseWhatsAppService,
    NotificationResult,
    normalize_phone,
)

logger = logging.getLogger(__name__)


class WhatsAppBridgeService(BaseWhatsAppService):
    """Sends messages through the bridge's REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        device_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        token = token or settings.whatsapp_bridge_token

        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("WhatsApp bridge token not configured")

        self.device_id = device_id or settings.whatsapp_device_id or "default"
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.whatsapp_bridge_url,
            headers=headers,
            timeout=httpx.Timeout(settings.remote_timeout_seconds),
            transport=transport,
        )
        logger.info(f"WhatsAppBridgeService initialized ({self._client.base_url})")

    @property
    def provider_name(self) -> str:
        return "bridge"

    async def _post(self, path: str, payload: dict) -> NotificationResult:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"WhatsApp bridge unreachable: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="bridge")

        if response.status_code >= 400:
            logger.error(f"WhatsApp bridge error {response.status_code}: {response.text[:200]}")
            return NotificationResult(
                success=False,
                error_message=f"Bridge returned {response.status_code}",
                provider="bridge",
            )

        try:
            body = response.json() if response.content else {}
        except ValueError:
            logger.error(f"WhatsApp bridge sent a non-JSON reply: {response.text[:200]}")
            return NotificationResult(
                success=False,
                error_message="Bridge returned an unreadable response",
                provider="bridge",
            )
        if not isinstance(body, dict):
            body = {}
        if body.get("success") is False:
            return NotificationResult(
                success=False,
                error_message=body.get("error") or "Failed to send message",
                provider="bridge",
            )

        return NotificationResult(success=True, message_id=body.get("messageId"), provider="bridge")

    async def send_message(
        self,
        phone: str,
        message: str,
        device_id: Optional[str] = None,
    ) -> NotificationResult:
        result = await self._post(
            "/send",
            {
                "phone": normalize_phone(phone),
                "message": message,
                "deviceId": device_id or self.device_id,
            },
        )
        if result.success:
            logger.info(f"WhatsApp sent to {normalize_phone(phone)}")
        return result

    async def notify_order_status(
        self,
        order_id: str,
        status: str,
        phone: str,
        order_number: str,
        motoboy: Optional[str] = None,
    ) -> NotificationResult:
        result = await self._post(
            "/notify-order",
            {
                "orderId": order_id,
                "status": status,
                "customerPhone": normalize_phone(phone),
                "orderNumber": order_number,
                "motoboy": motoboy,
            },
        )
        if result.success:
            logger.info(f"Customer notified: order {order_number} is {status}")
        return result

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.warning(f"WhatsApp bridge health check failed: {e}")
            return False
        return response.status_code < 400

    async def aclose(self) -> None:
        await self._client.aclose()
