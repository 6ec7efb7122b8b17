"""
Payment gateway interface.

Implementations:
- RazorpayGateway: production adapter over the razorpay SDK
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class ExternalOrder:
    id: str
    amount: Decimal
    currency: str
    receipt: str
    status: str


@dataclass(frozen=True)
class GatewayPayment:
    id: str
    order_id: Optional[str]
    amount_minor: int
    currency: str
    status: str  # created, authorized, captured, refunded, failed
    method: Optional[str] = None
    raw: dict = field(default_factory=dict)


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


class PaymentGateway(ABC):
    @abstractmethod
    async def create_external_order(
        self, amount: Decimal, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> ExternalOrder:
        """Create an order; raises GatewayError once retries are exhausted."""

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout callback signature for (order_id, payment_id)."""

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Look up a payment by id."""

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        """Check the signature header of a webhook delivery."""
