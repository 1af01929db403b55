"""
WhatsApp Service Factory

Returns the mock or the bridge-backed service based on ENV_MODE.

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from functools import lru_cache

from gourmetflow.core.config import get_settings
from gourmetflow.services.whatsapp.base import (
    BaseWhatsAppService,
    NotificationResult,
    build_status_message,
)
from gourmetflow.services.whatsapp.bridge import WhatsAppBridgeService
from gourmetflow.services.whatsapp.mock import MockWhatsAppService

logger = logging.getLogger(__name__)


@lru_cache()
def get_whatsapp_service() -> BaseWhatsAppService:
    """Get the configured WhatsApp service."""
    settings = get_settings()

    if settings.is_development:
        logger.info("WhatsApp Service: Using MockWhatsAppService (development mode)")
        return MockWhatsAppService(failure_rate=0.05)

    logger.info(f"WhatsApp Service: Using WhatsAppBridgeService ({settings.env_mode.value} mode)")
    return WhatsAppBridgeService()


def reset_whatsapp_service() -> None:
    """Clear the cached service instance."""
    get_whatsapp_service.cache_clear()


__all__ = [
    "get_whatsapp_service",
    "reset_whatsapp_service",
    "BaseWhatsAppService",
    "NotificationResult",
    "build_status_message",
    "MockWhatsAppService",
    "WhatsAppBridgeService",
]
