"""
WhatsApp Service Abstract Base Class

The WhatsApp bridge is an external process; the terminal only asks it to
send a message or to notify a customer about an order status change.
Delivery retries belong to the bridge, never to the sync engine, so
every call returns a result instead of raising.

Author: GourmetFlow Team
Version: 1.0.0
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

STATUS_MESSAGES = {
    "new": "🆕 Seu pedido foi recebido e está sendo preparado!",
    "confirmed": "✅ Pedido confirmado! Estamos preparando com carinho.",
    "preparing": "👨‍🍳 Seu pedido está sendo preparado na cozinha!",
    "ready": "✨ Pedido pronto! Em breve sairá para entrega.",
    "out_for_delivery": "🛵 Pedido saiu para entrega!",
    "completed": "🎉 Pedido entregue! Obrigado pela preferência!",
    "cancelled": "❌ Pedido cancelado.",
}


@dataclass
class NotificationResult:
    """Result from sending a WhatsApp message."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


def normalize_phone(phone: str) -> str:
    """Digits only, the way the bridge addresses contacts."""
    return re.sub(r"\D", "", phone)


def build_status_message(status: str, order_number: str, motoboy: Optional[str] = None) -> str:
    message = f"Pedido #{order_number}\n\n"
    message += STATUS_MESSAGES.get(status, f"Status: {status}")
    if motoboy and status == "out_for_delivery":
        message += f"\n\n🛵 Motoboy: {motoboy}"
    return message


class BaseWhatsAppService(ABC):
    """Abstract base class for WhatsApp senders."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def send_message(
        self,
        phone: str,
        message: str,
        device_id: Optional[str] = None,
    ) -> NotificationResult:
        """Send a free-text message from a connected device."""
        pass

    @abstractmethod
    async def notify_order_status(
        self,
        order_id: str,
        status: str,
        phone: str,
        order_number: str,
        motoboy: Optional[str] = None,
    ) -> NotificationResult:
        """Tell the customer their order moved to ``status``."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    async def aclose(self) -> None:
        return None
