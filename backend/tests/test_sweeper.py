"""
Tests for the background sweep: payment expiry, completion, reconciliation.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from academy_booking.core.exceptions import InvalidTransition
from academy_booking.models import Batch, BatchCapacity
from academy_booking.services import ledger_service, payment_service, query_service, reservation_service, sweeper

PARENT_ID = "parent-1"


@pytest.fixture
def pending_booking(db_session, make_batch, make_participants, gateway):
    async def _make(**batch_overrides):
        batch = await make_batch(requires_approval=False, **batch_overrides)
        kids = await make_participants(PARENT_ID, 2)
        booking = await reservation_service.reserve(
            db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids
        )
        return await payment_service.create_order(
            db_session, booking_id=booking.id, user_id=PARENT_ID, gateway=gateway
        )

    return _make


def _later(minutes: int) -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


@pytest.mark.asyncio
async def test_stale_payment_is_cancelled_and_late_callback_rejected(db_session, pending_booking, gateway):
    booking, order = await pending_booking()
    booking_id, batch_id = booking.id, booking.batch_id

    expired = await sweeper.expire_stale_payments(db_session, now=_later(31), timeout=timedelta(minutes=30))

    assert expired == 1
    stored = await query_service.get_booking(db_session, booking_id)
    assert stored.status == "cancelled"
    assert stored.payment_status == "failed"
    assert stored.is_active is False
    assert await ledger_service.committed_seats(db_session, batch_id) == 0

    payment_id, signature = gateway.pay(order.id)
    with pytest.raises(InvalidTransition):
        await payment_service.verify_payment(
            db_session, order_id=order.id, payment_id=payment_id, signature=signature, gateway=gateway
        )


@pytest.mark.asyncio
async def test_recent_payment_is_left_alone(db_session, pending_booking):
    booking, _ = await pending_booking()

    expired = await sweeper.expire_stale_payments(db_session, now=_later(5), timeout=timedelta(minutes=30))

    assert expired == 0
    stored = await query_service.get_booking(db_session, booking.id)
    assert stored.status == "payment_pending"


@pytest.mark.asyncio
async def test_confirmed_booking_is_not_expired(db_session, pending_booking, gateway):
    booking, order = await pending_booking()
    payment_id, signature = gateway.pay(order.id)
    await payment_service.verify_payment(
        db_session, order_id=order.id, payment_id=payment_id, signature=signature, gateway=gateway
    )

    expired = await sweeper.expire_stale_payments(db_session, now=_later(31), timeout=timedelta(minutes=30))

    assert expired == 0
    stored = await query_service.get_booking(db_session, booking.id)
    assert stored.status == "confirmed"


@pytest.mark.asyncio
async def test_finished_batches_complete_their_bookings(db_session, pending_booking, gateway):
    booking, order = await pending_booking()
    payment_id, signature = gateway.pay(order.id)
    await payment_service.verify_payment(
        db_session, order_id=order.id, payment_id=payment_id, signature=signature, gateway=gateway
    )
    end_date = date.today() + timedelta(days=60)

    assert await sweeper.complete_finished_bookings(db_session, today=end_date) == 0
    completed = await sweeper.complete_finished_bookings(db_session, today=end_date + timedelta(days=1))

    assert completed == 1
    stored = await query_service.get_booking(db_session, booking.id)
    assert stored.status == "completed"
    assert stored.payment_status == "success"
    assert stored.is_active is False
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 0


@pytest.mark.asyncio
async def test_reconcile_ledgers_rebuilds_counters(db_session, pending_booking):
    booking, _ = await pending_booking()
    await db_session.execute(
        update(BatchCapacity).where(BatchCapacity.batch_id == booking.batch_id).values(committed=9)
    )
    await db_session.commit()

    assert await sweeper.reconcile_ledgers(db_session) == 1
    assert await ledger_service.committed_seats(db_session, booking.batch_id) == 2


@pytest.mark.asyncio
async def test_reconcile_ledgers_follows_catalog_capacity(db_session, pending_booking):
    booking, _ = await pending_booking()
    await db_session.execute(update(Batch).where(Batch.id == booking.batch_id).values(capacity=4))
    await db_session.commit()

    assert await sweeper.reconcile_ledgers(db_session) == 1

    row = (
        await db_session.execute(
            select(BatchCapacity)
            .where(BatchCapacity.batch_id == booking.batch_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert row.capacity == 4
    assert row.committed == 2
    assert await ledger_service.free_seats(db_session, booking.batch_id, 4) == 2


@pytest.mark.asyncio
async def test_run_sweeper_stops_on_event(session_factory):
    stop_event = asyncio.Event()
    task = asyncio.create_task(sweeper.run_sweeper(session_factory, stop_event, interval=0.01))

    await asyncio.sleep(0.05)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert task.done()
