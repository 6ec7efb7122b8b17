"""
Razorpay payment gateway adapter.

The razorpay SDK is synchronous (requests underneath), so every call runs
in a worker thread under a hard timeout. Transient failures (timeouts,
connection errors, gateway 5xx) are retried with exponential backoff;
a 4xx rejection is final and surfaces immediately as a non-retryable
GatewayError.

Signatures (checked through the SDK utility):
  checkout callback: HMAC-SHA256(key_secret, "{order_id}|{payment_id}")
  webhook delivery:  HMAC-SHA256(webhook_secret, raw_body)
"""

import asyncio
import time
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Optional

import razorpay
import requests

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import GatewayError
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import gateway_latency, record_gateway_call
from academy_booking.services.interfaces.gateway import (
    ExternalOrder,
    GatewayPayment,
    PaymentGateway,
    to_minor_units,
)

logger = get_logger(__name__)

RETRYABLE_ERRORS = (
    asyncio.TimeoutError,
    requests.exceptions.RequestException,
    razorpay.errors.ServerError,
    razorpay.errors.GatewayError,
)


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        webhook_secret: str,
        client: Optional[Any] = None,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff: float = 0.5,
    ):
        self.key_id = key_id
        self._webhook_secret = webhook_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff

    async def _call(self, operation: str, fn: Callable[..., dict], *args, **kwargs) -> dict:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(
                    asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout
                )
            except razorpay.errors.BadRequestError as e:
                record_gateway_call(operation, "rejected")
                logger.warning("gateway_request_rejected", operation=operation, error=str(e))
                raise GatewayError(
                    f"Payment gateway rejected {operation}: {e}", retryable=False, operation=operation
                ) from e
            except RETRYABLE_ERRORS as e:
                last_error = e
                record_gateway_call(operation, "retry")
                logger.warning(
                    "gateway_call_failed",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_retries,
                    error=str(e) or type(e).__name__,
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff * (2 ** (attempt - 1)))
                continue
            finally:
                gateway_latency.labels(operation=operation).observe(time.perf_counter() - start)

            record_gateway_call(operation, "ok")
            return result

        record_gateway_call(operation, "error")
        logger.error("gateway_retries_exhausted", operation=operation, error=str(last_error))
        raise GatewayError(
            f"Payment gateway unavailable for {operation}. Please try again.",
            retryable=True,
            operation=operation,
        )

    async def create_external_order(
        self, amount: Decimal, currency: str, receipt: str, notes: Optional[dict] = None
    ) -> ExternalOrder:
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency.upper(),
            "receipt": receipt,
            "notes": notes or {},
        }
        order = await self._call("create_order", self.client.order.create, data=payload)
        logger.info("gateway_order_created", order_id=order["id"], receipt=receipt, amount_minor=payload["amount"])
        return ExternalOrder(
            id=order["id"],
            amount=Decimal(order.get("amount", payload["amount"])) / 100,
            currency=order.get("currency", payload["currency"]),
            receipt=order.get("receipt", receipt),
            status=order.get("status", "created"),
        )

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        try:
            self.client.utility.verify_payment_signature(
                {
                    "razorpay_order_id": order_id,
                    "razorpay_payment_id": payment_id,
                    "razorpay_signature": signature,
                }
            )
        except razorpay.errors.SignatureVerificationError:
            return False
        return True

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        payment = await self._call("fetch_payment", self.client.payment.fetch, payment_id)
        return GatewayPayment(
            id=payment["id"],
            order_id=payment.get("order_id"),
            amount_minor=int(payment.get("amount", 0)),
            currency=payment.get("currency", ""),
            status=payment.get("status", ""),
            method=payment.get("method"),
            raw=payment,
        )

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        if not signature:
            return False
        try:
            self.client.utility.verify_webhook_signature(body.decode("utf-8"), signature, self._webhook_secret)
        except (razorpay.errors.SignatureVerificationError, UnicodeDecodeError):
            return False
        return True


@lru_cache()
def get_payment_gateway() -> RazorpayGateway:
    settings = get_settings()
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        max_retries=settings.GATEWAY_MAX_RETRIES,
        backoff=settings.GATEWAY_BACKOFF_SECONDS,
    )
