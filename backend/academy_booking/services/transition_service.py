"""
Applying state machine transitions to persisted bookings.

Every mutation of an existing booking goes through here:

  1. take the booking's transition lock (in-process serialization)
  2. re-read the booking from the database
  3. compute the target state with the pure state machine
  4. apply it, releasing seats when the booking stops holding capacity
  5. commit; the ORM version column rejects a concurrent writer from
     another instance (StaleDataError -> Busy)

Lock order is always booking -> batch. Reservations take only the batch
lock, so the two never wait on each other in opposite orders.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import Busy, CapacityExceeded, NotFound
from academy_booking.core.locks import LockTimeout, batch_locks, booking_locks
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import record_transition
from academy_booking.domain.state_machine import BookingEvent, BookingState, releases_capacity, transition
from academy_booking.models.booking import Booking
from academy_booking.services import ledger_service
from academy_booking.services.cache_service import invalidate_availability

logger = get_logger(__name__)


@asynccontextmanager
async def booking_lock(booking_id: str) -> AsyncIterator[None]:
    timeout = get_settings().LOCK_TIMEOUT_SECONDS
    try:
        async with booking_locks.hold(booking_id, timeout):
            yield
    except LockTimeout as e:
        if e.key != f"booking:{booking_id}":
            raise
        raise Busy("Booking is being updated by another request. Please try again.", booking_id=booking_id)


@asynccontextmanager
async def batch_lock(batch_id: str) -> AsyncIterator[None]:
    timeout = get_settings().LOCK_TIMEOUT_SECONDS
    try:
        async with batch_locks.hold(batch_id, timeout):
            yield
    except LockTimeout as e:
        if e.key != f"batch:{batch_id}":
            raise
        raise Busy("Batch is being updated by another request. Please try again.", batch_id=batch_id)


@asynccontextmanager
async def reservation_lock(batch_id: str, requested: int) -> AsyncIterator[None]:
    """Batch lock for taking seats; contention is reported as capacity backpressure."""
    timeout = get_settings().LOCK_TIMEOUT_SECONDS
    try:
        async with batch_locks.hold(batch_id, timeout):
            yield
    except LockTimeout as e:
        if e.key != f"batch:{batch_id}":
            raise
        raise CapacityExceeded(batch_id, requested, None, message="Batch is in high demand. Please try again.")


async def load_booking(db: AsyncSession, booking_id: str) -> Booking:
    """Fresh read of a visible (not soft-deleted) booking."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id, Booking.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    booking.state  # refuses unreachable stored pairs
    return booking


async def find_booking_by_order(db: AsyncSession, order_id: str) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.order_id == order_id, Booking.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def plan_transition(
    booking: Booking, event: BookingEvent, *, attempts_exhausted: bool = False
) -> tuple[BookingState, BookingState]:
    before = booking.state
    return before, transition(before, event, attempts_exhausted=attempts_exhausted)


async def commit_transition(
    db: AsyncSession,
    booking: Booking,
    event: BookingEvent,
    *,
    attempts_exhausted: bool = False,
    extra_rows: tuple = (),
    **fields,
) -> Booking:
    """
    Apply `event` to a booking read under its transition lock and commit.

    `fields` are written in the same unit (gateway references, reasons);
    `extra_rows` are added to the session first (e.g. the payment
    confirmation marker). Seats are released through the ledger when the
    booking stops holding capacity.
    """
    before, after = plan_transition(booking, event, attempts_exhausted=attempts_exhausted)
    release = releases_capacity(before, after)

    async def _apply_and_commit() -> None:
        booking.apply_state(after)
        for name, value in fields.items():
            setattr(booking, name, value)
        for row in extra_rows:
            db.add(row)
        if release:
            await ledger_service.release(db, booking.reservation_token)
        await db.commit()

    try:
        if release:
            async with batch_lock(booking.batch_id):
                await _apply_and_commit()
        else:
            await _apply_and_commit()
    except StaleDataError:
        await db.rollback()
        logger.warning("booking_concurrent_update", booking_id=booking.id, booking_event=event.value)
        raise Busy("Booking was modified by another request. Please try again.", booking_id=booking.id)
    except Exception:
        await db.rollback()
        raise

    record_transition(event.value)
    logger.info(
        "booking_transition",
        booking_id=booking.id,
        booking_event=event.value,
        from_status=before.status.value,
        to_status=after.status.value,
        payment_status=after.payment_status.value,
        seats_released=booking.seat_count if release else 0,
    )
    if release:
        await invalidate_availability(booking.batch_id)
    return booking
