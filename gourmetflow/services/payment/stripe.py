"""
Stripe Payment Gateway

Production gateway using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment

Notes:
    - The order id is sent as the Stripe idempotency key, so charging an
      order twice never creates two PaymentIntents
    - The SDK is blocking; calls run in a worker thread

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging

import stripe

from gourmetflow.core.config import get_settings
from gourmetflow.services.payment.base import (
    CHARGEABLE_METHODS,
    BasePaymentGateway,
    ChargeResult,
)

logger = logging.getLogger(__name__)

PAYMENT_METHOD_TYPES = {
    "credit_card": "card",
    "debit_card": "card",
    "pix": "pix",
}


class StripePaymentGateway(BasePaymentGateway):
    """
    Charges orders through Stripe PaymentIntents.

    Raises:
        ValueError: If STRIPE_SECRET_KEY is not configured
    """

    def __init__(self):
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required for production mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._currency = settings.stripe_currency

        logger.info(f"StripePaymentGateway initialized (currency={self._currency})")

    @property
    def provider_name(self) -> str:
        return "stripe"

    @staticmethod
    def _to_cents(amount: float) -> int:
        return int(round(amount * 100))

    async def charge(self, amount: float, order_id: str, method: str) -> ChargeResult:
        if method not in CHARGEABLE_METHODS:
            return self._unsupported(amount, method, self.provider_name)

        logger.info(f"Stripe: charging order {order_id} R$ {amount:.2f} ({method})")

        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=self._to_cents(amount),
                currency=self._currency,
                payment_method_types=[PAYMENT_METHOD_TYPES[method]],
                metadata={"order_id": order_id, "source": "gourmetflow_terminal"},
                idempotency_key=f"charge_{order_id}",
            )
        except stripe.CardError as e:
            logger.warning(f"Stripe: card declined for {order_id} - {e.code}: {e.user_message}")
            return ChargeResult(
                success=False,
                amount=amount,
                currency=self._currency,
                method=method,
                error_message=e.user_message,
                error_code=e.code,
                provider=self.provider_name,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe: charge failed for {order_id} - {e}")
            return ChargeResult(
                success=False,
                amount=amount,
                currency=self._currency,
                method=method,
                error_message=str(e),
                error_code=getattr(e, "code", None) or "stripe_error",
                provider=self.provider_name,
            )

        logger.info(f"Stripe: PaymentIntent {intent.id} status={intent.status}")
        return ChargeResult(
            success=intent.status not in ("canceled", "requires_payment_method"),
            transaction_id=intent.id,
            status=intent.status,
            amount=intent.amount / 100.0,
            currency=intent.currency,
            method=method,
            provider=self.provider_name,
        )

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(stripe.Balance.retrieve)
            return True
        except stripe.StripeError as e:
            logger.warning(f"Stripe health check failed: {e}")
            return False
