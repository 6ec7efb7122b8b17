"""
Payment orchestrator: external order creation, checkout callback
verification and gateway webhooks.

IDEMPOTENCY
===========

Gateway callbacks and webhooks are delivered at least once, possibly
concurrently and possibly by different service instances. A payment is
confirmed exactly once because:

  - every mutation runs under the per-booking lock and re-reads the booking
  - the confirmed transition and the payment_confirmations row for the
    order commit together; the row's primary key (order_id) rejects a
    second writer, the booking version column rejects a racing transition
  - a redelivery that finds the booking confirmed, or finds the marker,
    is answered with already_processed=True and changes nothing

Gateway calls never run inside an open write transaction: the read
transaction is ended before calling out and the booking is re-read
afterwards.
"""

import json
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import (
    Busy,
    Forbidden,
    GatewayError,
    InvalidTransition,
    NotFound,
    PaymentFailed,
    SignatureError,
    ValidationError,
)
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import record_payment_verification
from academy_booking.domain.state_machine import BookingEvent, BookingStatus
from academy_booking.models.booking import Booking, PaymentConfirmation
from academy_booking.services.interfaces.gateway import ExternalOrder, GatewayPayment, PaymentGateway, to_minor_units
from academy_booking.services.interfaces.notifier import LogNotifier, Notifier, notify_safely
from academy_booking.services.transition_service import (
    booking_lock,
    commit_transition,
    find_booking_by_order,
    load_booking,
    plan_transition,
)

logger = get_logger(__name__)

MIN_ORDER_AMOUNT_MINOR = 100
PAYMENT_OK_STATUSES = frozenset({"captured", "authorized"})
CONFIRMED_STATUSES = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value})


def build_receipt(booking_id: str) -> str:
    # Gateway receipts are limited to 40 characters
    return f"booking_{booking_id.replace('-', '')[:32]}"


def _existing_order(booking: Booking) -> ExternalOrder:
    return ExternalOrder(
        id=booking.order_id,
        amount=booking.amount,
        currency=booking.currency,
        receipt=booking.order_receipt or build_receipt(booking.id),
        status="created",
    )


async def create_order(
    db: AsyncSession,
    *,
    booking_id: str,
    user_id: str,
    gateway: PaymentGateway,
    notifier: Optional[Notifier] = None,
) -> tuple[Booking, ExternalOrder]:
    """
    Create (or return the already open) external order for an approved booking.

    A gateway rejection cancels the booking and frees its seats; a gateway
    outage leaves it approved so the user can try again.
    """
    notifier = notifier or LogNotifier()

    async with booking_lock(booking_id):
        booking = await load_booking(db, booking_id)
        if booking.user_id != user_id:
            raise Forbidden("Booking does not belong to the requesting user", booking_id=booking_id)

        if booking.status == BookingStatus.PAYMENT_PENDING.value and booking.order_id:
            logger.info("payment_order_reused", booking_id=booking.id, order_id=booking.order_id)
            return booking, _existing_order(booking)

        plan_transition(booking, BookingEvent.INITIATE_PAYMENT)

        amount_minor = to_minor_units(booking.amount)
        if amount_minor < MIN_ORDER_AMOUNT_MINOR:
            raise ValidationError(
                "Booking amount is below the minimum chargeable amount",
                booking_id=booking_id,
                amount=str(booking.amount),
            )

        receipt = build_receipt(booking.id)
        # End the read transaction before calling out
        await db.commit()

        try:
            order = await gateway.create_external_order(
                booking.amount,
                booking.currency,
                receipt,
                notes={"booking_id": booking.id, "batch_id": booking.batch_id, "user_id": booking.user_id},
            )
        except GatewayError as e:
            if e.retryable:
                logger.error("payment_order_failed", booking_id=booking_id, error=e.message)
                raise
            logger.error("payment_order_rejected", booking_id=booking_id, error=e.message)
            booking = await load_booking(db, booking_id)
            await commit_transition(
                db,
                booking,
                BookingEvent.CANCEL,
                cancelled_by="system",
                cancellation_reason=f"Payment order rejected by gateway: {e.message}"[:500],
            )
            await notify_safely(notifier, "booking.cancelled", booking)
            raise

        booking = await load_booking(db, booking_id)
        await commit_transition(
            db,
            booking,
            BookingEvent.INITIATE_PAYMENT,
            order_id=order.id,
            order_receipt=receipt,
            payment_initiated_at=datetime.now(timezone.utc),
        )

    logger.info(
        "payment_order_created",
        booking_id=booking.id,
        order_id=order.id,
        amount=str(booking.amount),
        currency=booking.currency,
    )
    return booking, order


async def _marker_exists(db: AsyncSession, order_id: str) -> bool:
    result = await db.execute(
        select(PaymentConfirmation.order_id).where(PaymentConfirmation.order_id == order_id)
    )
    return result.scalar_one_or_none() is not None


def _payment_problem(payment: GatewayPayment, booking: Booking, order_id: str) -> Optional[str]:
    if payment.order_id and payment.order_id != order_id:
        return "Payment does not belong to this order"
    if payment.status not in PAYMENT_OK_STATUSES:
        return f"Payment status is '{payment.status}'"
    if payment.amount_minor != to_minor_units(booking.amount):
        return "Payment amount does not match the booking amount"
    if payment.currency and payment.currency.upper() != booking.currency.upper():
        return "Payment currency does not match the booking currency"
    return None


async def _record_failure(db: AsyncSession, booking: Booking, reason: str, notifier: Notifier) -> Booking:
    """Apply verify_fail; the last allowed attempt cancels the booking and frees its seats."""
    failed_count = (booking.payment_failed_count or 0) + 1
    exhausted = failed_count >= get_settings().MAX_PAYMENT_ATTEMPTS
    extra = {"cancelled_by": "system", "cancellation_reason": "Payment attempts exhausted"} if exhausted else {}

    await commit_transition(
        db,
        booking,
        BookingEvent.VERIFY_FAIL,
        attempts_exhausted=exhausted,
        payment_failed_count=failed_count,
        payment_failure_reason=reason[:255],
        **extra,
    )
    record_payment_verification("failed")
    logger.warning(
        "payment_failed",
        booking_id=booking.id,
        order_id=booking.order_id,
        attempt=failed_count,
        attempts_exhausted=exhausted,
        reason=reason,
    )
    await notify_safely(notifier, "booking.cancelled" if exhausted else "payment.failed", booking)
    return booking


async def _confirm(
    db: AsyncSession,
    booking_id: str,
    order_id: str,
    payment_id: str,
    *,
    signature: Optional[str],
    gateway: PaymentGateway,
    notifier: Notifier,
) -> tuple[Booking, bool]:
    async with booking_lock(booking_id):
        booking = await load_booking(db, booking_id)

        if booking.status in CONFIRMED_STATUSES or await _marker_exists(db, order_id):
            record_payment_verification("already_processed")
            logger.info("payment_already_processed", booking_id=booking.id, order_id=order_id, payment_id=payment_id)
            return booking, True

        plan_transition(booking, BookingEvent.VERIFY_SUCCESS)
        await db.commit()

        payment = await gateway.fetch_payment(payment_id)

        booking = await load_booking(db, booking_id)
        problem = _payment_problem(payment, booking, order_id)
        if problem:
            await _record_failure(db, booking, problem, notifier)
            raise PaymentFailed(problem, booking_id=booking.id, order_id=order_id, payment_id=payment_id)

        marker = PaymentConfirmation(order_id=order_id, payment_id=payment_id, booking_id=booking.id)
        try:
            await commit_transition(
                db,
                booking,
                BookingEvent.VERIFY_SUCCESS,
                extra_rows=(marker,),
                payment_id=payment_id,
                payment_signature=signature,
                payment_method=payment.method,
                paid_at=datetime.now(timezone.utc),
                payment_failure_reason=None,
            )
        except (IntegrityError, Busy):
            # Another instance confirmed the same order first
            booking = await load_booking(db, booking_id)
            if booking.status not in CONFIRMED_STATUSES:
                raise
            record_payment_verification("already_processed")
            logger.info("payment_confirmed_concurrently", booking_id=booking.id, order_id=order_id)
            return booking, True

    record_payment_verification("confirmed")
    logger.info(
        "payment_confirmed",
        booking_id=booking.id,
        order_id=order_id,
        payment_id=payment_id,
        method=payment.method,
        amount=str(booking.amount),
    )
    await notify_safely(notifier, "booking.confirmed", booking)
    return booking, False


async def verify_payment(
    db: AsyncSession,
    *,
    order_id: str,
    payment_id: str,
    signature: str,
    gateway: PaymentGateway,
    user_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> tuple[Booking, bool]:
    """
    Verify a checkout callback and confirm the booking.

    Returns (booking, already_processed). A signature mismatch raises
    SignatureError before anything is read or written.
    """
    notifier = notifier or LogNotifier()
    if not order_id or not payment_id or not signature:
        raise ValidationError("order_id, payment_id and signature are required")

    if not gateway.verify_payment_signature(order_id, payment_id, signature):
        record_payment_verification("signature_error")
        logger.warning("payment_signature_mismatch", order_id=order_id, payment_id=payment_id, user_id=user_id)
        raise SignatureError("Payment signature verification failed", order_id=order_id)

    booking = await find_booking_by_order(db, order_id)
    if booking is None:
        raise NotFound("No booking found for this order", order_id=order_id)
    if user_id is not None and booking.user_id != user_id:
        raise Forbidden("Booking does not belong to the requesting user", booking_id=booking.id)

    return await _confirm(
        db,
        booking.id,
        order_id,
        payment_id,
        signature=signature,
        gateway=gateway,
        notifier=notifier,
    )


async def handle_webhook(
    db: AsyncSession,
    *,
    body: bytes,
    signature: str,
    gateway: PaymentGateway,
    notifier: Optional[Notifier] = None,
) -> dict:
    """
    Process one gateway webhook delivery.

    Signature failures raise SignatureError. Everything else is
    acknowledged with a result dict so the gateway stops redelivering;
    deliveries that cannot be applied are logged and ignored.
    """
    notifier = notifier or LogNotifier()

    if not gateway.verify_webhook_signature(body, signature or ""):
        logger.warning("webhook_signature_mismatch")
        raise SignatureError("Webhook signature verification failed")

    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    event = payload.get("event")
    entities = payload.get("payload") or {}
    payment = (entities.get("payment") or {}).get("entity") or {}
    order = (entities.get("order") or {}).get("entity") or {}
    order_id = payment.get("order_id") or order.get("id")
    payment_id = payment.get("id")

    log = logger.bind(webhook_event=event, order_id=order_id, payment_id=payment_id)

    if event not in ("payment.captured", "order.paid", "payment.failed"):
        log.info("webhook_ignored", reason="unhandled_event")
        return {"status": "ignored", "event": event}

    if not order_id or not payment_id:
        log.warning("webhook_ignored", reason="missing_references")
        return {"status": "ignored", "event": event}

    booking = await find_booking_by_order(db, order_id)
    if booking is None:
        log.warning("webhook_ignored", reason="unknown_order")
        return {"status": "ignored", "event": event}

    if event == "payment.failed":
        async with booking_lock(booking.id):
            booking = await load_booking(db, booking.id)
            if booking.status != BookingStatus.PAYMENT_PENDING.value:
                log.info("webhook_ignored", reason="not_awaiting_payment", status=booking.status)
                return {"status": "ignored", "event": event, "booking_id": booking.id}
            reason = payment.get("error_description") or "Payment failed at gateway"
            await _record_failure(db, booking, reason, notifier)
        return {"status": "failed", "event": event, "booking_id": booking.id}

    booking_id = booking.id
    try:
        booking, already_processed = await _confirm(
            db,
            booking_id,
            order_id,
            payment_id,
            signature=None,
            gateway=gateway,
            notifier=notifier,
        )
    except InvalidTransition as e:
        # Paid after the booking was cancelled or expired
        log.error("webhook_late_payment", booking_id=booking_id, status=e.status)
        return {"status": "ignored", "event": event, "booking_id": booking_id}
    except PaymentFailed as e:
        return {"status": "failed", "event": event, "booking_id": booking_id, "reason": e.message}

    return {
        "status": "already_processed" if already_processed else "confirmed",
        "event": event,
        "booking_id": booking.id,
    }
