"""
Tests for cancellation and seat release.
"""

import pytest

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import Busy, Forbidden, NotCancellable
from academy_booking.services import (
    approval_service,
    cancellation_service,
    ledger_service,
    payment_service,
    query_service,
    reservation_service,
)
from academy_booking.services.transition_service import batch_lock

PARENT_ID = "parent-1"
OWNER_ID = "academy-owner"


@pytest.fixture
def reserve(db_session, make_batch, make_participants):
    async def _reserve(count: int = 2, **batch_overrides):
        batch = await make_batch(**batch_overrides)
        kids = await make_participants(PARENT_ID, count)
        return await reservation_service.reserve(
            db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids
        )

    return _reserve


@pytest.mark.asyncio
async def test_owner_cancels_and_seats_return(db_session, reserve):
    booking = await reserve(count=2)

    cancelled = await cancellation_service.cancel(
        db_session, booking_id=booking.id, actor_id=PARENT_ID, reason="Moving cities"
    )

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "not_initiated"
    assert cancelled.is_active is False
    assert cancelled.is_deleted is False
    assert cancelled.cancelled_by == PARENT_ID
    assert cancelled.cancellation_reason == "Moving cities"
    assert cancelled.refund_pending is False
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 0


@pytest.mark.asyncio
async def test_academy_can_cancel(db_session, reserve):
    booking = await reserve()

    cancelled = await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=OWNER_ID)
    assert cancelled.status == "cancelled"
    assert cancelled.cancelled_by == OWNER_ID


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(db_session, reserve):
    booking = await reserve()

    with pytest.raises(Forbidden):
        await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id="stranger")
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 2


@pytest.mark.asyncio
async def test_cancel_twice_not_cancellable(db_session, reserve):
    booking = await reserve()
    await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)

    with pytest.raises(NotCancellable):
        await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 0


@pytest.mark.asyncio
async def test_rejected_booking_not_cancellable(db_session, reserve):
    booking = await reserve()
    await approval_service.decide(
        db_session, booking_id=booking.id, actor_id=OWNER_ID, approve=False, reason="Not a fit"
    )

    with pytest.raises(NotCancellable):
        await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)


@pytest.mark.asyncio
async def test_cancel_pending_payment_cancels_payment(db_session, reserve, gateway):
    booking = await reserve(requires_approval=False)
    await payment_service.create_order(db_session, booking_id=booking.id, user_id=PARENT_ID, gateway=gateway)

    cancelled = await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "cancelled"
    assert cancelled.refund_pending is False


@pytest.mark.asyncio
async def test_cancel_paid_booking_flags_refund(db_session, reserve, gateway):
    booking = await reserve(requires_approval=False)
    _, order = await payment_service.create_order(
        db_session, booking_id=booking.id, user_id=PARENT_ID, gateway=gateway
    )
    payment_id, signature = gateway.pay(order.id)
    await payment_service.verify_payment(
        db_session, order_id=order.id, payment_id=payment_id, signature=signature, gateway=gateway
    )

    cancelled = await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "refunded"
    assert cancelled.refund_pending is True
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 0


@pytest.mark.asyncio
async def test_cancelled_seats_can_be_booked_again(db_session, reserve, make_participants):
    booking = await reserve(count=2, capacity=2)
    await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)

    others = await make_participants("parent-2", 2)
    second = await reservation_service.reserve(
        db_session, user_id="parent-2", batch_id=booking.batch_id, participant_ids=others
    )
    assert second.status == "slot_booked"
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 2


@pytest.mark.asyncio
async def test_cancel_while_batch_is_locked_is_busy(db_session, reserve, monkeypatch):
    booking = await reserve(count=2)
    monkeypatch.setattr(get_settings(), "LOCK_TIMEOUT_SECONDS", 0.05)

    async with batch_lock(booking.batch_id):
        with pytest.raises(Busy) as exc_info:
            await cancellation_service.cancel(db_session, booking_id=booking.id, actor_id=PARENT_ID)

    assert exc_info.value.kind == "busy"
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["batch_id"] == booking.batch_id
    stored = await query_service.get_booking(db_session, booking.id)
    assert stored.status == "slot_booked"
    assert stored.is_active is True
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 2
