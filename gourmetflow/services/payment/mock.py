"""
Mock Payment Gateway

Simulates gateway charges without making real API calls.

Behavior:
    - Simulates response time
    - Randomly declines a share of card charges
    - PIX charges come back "pending" (customer still has to pay the QR code)
    - Charging the same order twice returns the first result

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging
import random
import uuid

from gourmetflow.services.payment.base import (
    CHARGEABLE_METHODS,
    BasePaymentGateway,
    ChargeResult,
)

logger = logging.getLogger(__name__)


class MockPaymentGateway(BasePaymentGateway):
    """
    Mock implementation of the payment gateway.

    Example:
        >>> gateway = MockPaymentGateway(failure_rate=0.0)
        >>> result = await gateway.charge(28.0, "offline_1", "credit_card")
        >>> result.status
        'succeeded'
    """

    DECLINE_REASONS = [
        ("card_declined", "Cartão recusado."),
        ("insufficient_funds", "Saldo insuficiente."),
        ("expired_card", "Cartão expirado."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        currency: str = "brl",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.currency = currency
        self.charges: dict[str, ChargeResult] = {}

        logger.info(f"MockPaymentGateway initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def charge(self, amount: float, order_id: str, method: str) -> ChargeResult:
        if method not in CHARGEABLE_METHODS:
            return self._unsupported(amount, method, self.provider_name)

        if amount <= 0:
            return ChargeResult(
                success=False,
                amount=amount,
                method=method,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
                provider=self.provider_name,
            )

        previous = self.charges.get(order_id)
        if previous is not None and previous.success:
            return previous

        if self.max_latency:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

        if method != "pix" and random.random() < self.failure_rate:
            code, message = random.choice(self.DECLINE_REASONS)
            logger.warning(f"Mock charge declined for {order_id}: {code}")
            result = ChargeResult(
                success=False,
                amount=amount,
                currency=self.currency,
                method=method,
                error_message=message,
                error_code=code,
                provider=self.provider_name,
            )
        else:
            result = ChargeResult(
                success=True,
                transaction_id=f"txn_mock_{uuid.uuid4().hex[:16]}",
                status="pending" if method == "pix" else "succeeded",
                amount=amount,
                currency=self.currency,
                method=method,
                provider=self.provider_name,
            )
            logger.info(f"Mock charge {result.transaction_id} for {order_id}: R$ {amount:.2f} ({method})")

        self.charges[order_id] = result
        return result

    async def health_check(self) -> bool:
        return True
