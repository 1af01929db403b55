"""
Payment Gateway Abstract Base Class

Payment gateways are opaque collaborators of the terminal: an order is
charged and a transaction result comes back. Nothing here is queued or
retried by the sync engine.

Design Pattern: Strategy Pattern
    - MockPaymentGateway in development
    - StripePaymentGateway in staging / production

Author: GourmetFlow Team
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

# Methods a gateway can actually charge; cash and "pending" are settled at the counter
CHARGEABLE_METHODS = {"credit_card", "debit_card", "pix"}


@dataclass
class ChargeResult:
    """
    Standardized result of a charge.

    Attributes:
        success: Whether the gateway accepted the charge
        transaction_id: Gateway transaction id
        status: Gateway status (succeeded, pending, failed, ...)
        amount: Amount charged in currency units
        currency: Three-letter currency code
        method: Payment method used
        error_message: Human-readable failure reason
        error_code: Machine-readable failure code
        provider: Gateway name
    """
    success: bool
    transaction_id: Optional[str] = None
    status: str = "failed"
    amount: Optional[float] = None
    currency: str = "brl"
    method: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    provider: str = "unknown"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "transaction_id": self.transaction_id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "method": self.method,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "provider": self.provider,
        }


class BasePaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def charge(self, amount: float, order_id: str, method: str) -> ChargeResult:
        """
        Charge an order.

        Args:
            amount: Amount in currency units (e.g. 28.00)
            order_id: Order being paid; used as the gateway idempotency key
            method: One of CHARGEABLE_METHODS

        Returns:
            ChargeResult: Declines are reported here, not raised
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @staticmethod
    def _unsupported(amount: float, method: str, provider: str) -> ChargeResult:
        return ChargeResult(
            success=False,
            amount=amount,
            method=method,
            error_message=f"Payment method '{method}' cannot be charged online",
            error_code="unsupported_method",
            provider=provider,
        )
