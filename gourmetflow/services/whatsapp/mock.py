"""
Mock WhatsApp Service

Simulates the bridge for development. No message leaves the machine;
everything is logged and kept in ``sent`` for inspection.

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging
import random
import uuid
from typing import Optional

from gourmetflow.services.whatsapp.base import (
    BaseWhatsAppService,
    NotificationResult,
    build_status_message,
    normalize_phone,
)

logger = logging.getLogger(__name__)


class MockWhatsAppService(BaseWhatsAppService):
    """Mock WhatsApp service for development."""

    def __init__(self, failure_rate: float = 0.05, max_latency: float = 0.0):
        self.failure_rate = failure_rate
        self.max_latency = max_latency
        self.sent: list[dict] = []
        logger.info(f"MockWhatsAppService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def send_message(
        self,
        phone: str,
        message: str,
        device_id: Optional[str] = None,
    ) -> NotificationResult:
        if self.max_latency:
            await asyncio.sleep(random.uniform(0, self.max_latency))

        number = normalize_phone(phone)
        if not number:
            return NotificationResult(success=False, error_message="Invalid phone number", provider="mock")

        if random.random() < self.failure_rate:
            logger.warning(f"Mock WhatsApp failed (simulated) to {number}")
            return NotificationResult(
                success=False,
                error_message="Simulated WhatsApp failure",
                provider="mock",
            )

        message_id = f"wa_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"phone": number, "message": message, "device_id": device_id or "default"})
        logger.info(f"Mock WhatsApp sent to {number}: {message[:50]}... (ID: {message_id})")

        return NotificationResult(success=True, message_id=message_id, provider="mock")

    async def notify_order_status(
        self,
        order_id: str,
        status: str,
        phone: str,
        order_number: str,
        motoboy: Optional[str] = None,
    ) -> NotificationResult:
        message = build_status_message(status, order_number, motoboy)
        return await self.send_message(phone, message)

    async def health_check(self) -> bool:
        return True
