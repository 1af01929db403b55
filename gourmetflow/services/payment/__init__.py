"""
Payment Gateway Factory

Usage:
    from gourmetflow.services.payment import get_payment_gateway

    gateway = get_payment_gateway()
    result = await gateway.charge(28.0, order.id, "credit_card")

Environment Switching:
    - ENV_MODE=development → MockPaymentGateway (no API calls)
    - ENV_MODE=staging → StripePaymentGateway (test keys)
    - ENV_MODE=production → StripePaymentGateway (live keys)

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
from functools import lru_cache

from gourmetflow.core.config import get_settings
from gourmetflow.services.payment.base import (
    CHARGEABLE_METHODS,
    BasePaymentGateway,
    ChargeResult,
)
from gourmetflow.services.payment.mock import MockPaymentGateway
from gourmetflow.services.payment.stripe import StripePaymentGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_gateway() -> BasePaymentGateway:
    """
    Get the configured payment gateway instance.

    Raises:
        ValueError: If not in development mode and Stripe is not configured
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Gateway: Using MockPaymentGateway (development mode)")
        return MockPaymentGateway(failure_rate=0.10, min_latency=0.2, max_latency=0.8)

    logger.info(f"Payment Gateway: Using StripePaymentGateway ({settings.env_mode.value} mode)")
    return StripePaymentGateway()


def reset_payment_gateway() -> None:
    """Clear the cached gateway instance."""
    get_payment_gateway.cache_clear()
    logger.debug("Payment gateway cache cleared")


__all__ = [
    "get_payment_gateway",
    "reset_payment_gateway",
    "BasePaymentGateway",
    "ChargeResult",
    "CHARGEABLE_METHODS",
    "MockPaymentGateway",
    "StripePaymentGateway",
]
