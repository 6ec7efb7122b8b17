"""
Background sweep.

Each cycle:
  - payment_pending bookings whose payment window has lapsed are failed
    with attempts exhausted (cancelled, seats released)
  - confirmed bookings of batches that have ended are completed
  - every ledger counter is reconciled against the live bookings

Each booking is handled under its own transition lock, so a callback that
confirms a booking while the sweep runs wins cleanly: the sweep re-reads
the booking and skips it.
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import BookingError
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import record_sweep_action
from academy_booking.domain.state_machine import BookingEvent, BookingStatus
from academy_booking.models.booking import Booking
from academy_booking.models.capacity import BatchCapacity
from academy_booking.services import ledger_service
from academy_booking.services.cache_service import invalidate_availability
from academy_booking.services.catalog_service import SqlCatalog
from academy_booking.services.interfaces.catalog import CatalogProvider
from academy_booking.services.transition_service import batch_lock, booking_lock, commit_transition, load_booking

logger = get_logger(__name__)


async def expire_stale_payments(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
    timeout: Optional[timedelta] = None,
) -> int:
    now = now or datetime.now(timezone.utc)
    timeout = timeout or timedelta(minutes=get_settings().PAYMENT_TIMEOUT_MINUTES)
    cutoff = now - timeout

    result = await db.execute(
        select(Booking.id).where(
            Booking.status == BookingStatus.PAYMENT_PENDING.value,
            Booking.is_deleted.is_(False),
            Booking.payment_initiated_at < cutoff,
        )
    )
    candidates = list(result.scalars().all())
    await db.commit()

    expired = 0
    for booking_id in candidates:
        try:
            async with booking_lock(booking_id):
                booking = await load_booking(db, booking_id)
                if booking.status != BookingStatus.PAYMENT_PENDING.value:
                    logger.info("sweep_skipped", booking_id=booking_id, status=booking.status)
                    continue
                await commit_transition(
                    db,
                    booking,
                    BookingEvent.VERIFY_FAIL,
                    attempts_exhausted=True,
                    payment_failure_reason="Payment window expired",
                    cancelled_by="system",
                    cancellation_reason="Payment not completed in time",
                )
                expired += 1
        except BookingError as e:
            logger.warning("sweep_expire_failed", booking_id=booking_id, kind=e.kind, error=e.message)

    record_sweep_action("expired", expired)
    if expired:
        logger.info("stale_payments_expired", count=expired, cutoff=cutoff.isoformat())
    return expired


async def complete_finished_bookings(
    db: AsyncSession,
    *,
    today: Optional[date] = None,
    catalog: Optional[CatalogProvider] = None,
) -> int:
    today = today or date.today()
    catalog = catalog or SqlCatalog(db)

    result = await db.execute(
        select(Booking.id, Booking.batch_id).where(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.is_deleted.is_(False),
        )
    )
    rows = result.all()

    ended: dict[str, bool] = {}
    for batch_id in {row.batch_id for row in rows}:
        batch = await catalog.get_batch(batch_id)
        ended[batch_id] = bool(batch and batch.end_date and batch.end_date < today)
    await db.commit()

    completed = 0
    for row in rows:
        if not ended[row.batch_id]:
            continue
        try:
            async with booking_lock(row.id):
                booking = await load_booking(db, row.id)
                if booking.status != BookingStatus.CONFIRMED.value:
                    continue
                await commit_transition(db, booking, BookingEvent.COMPLETE)
                completed += 1
        except BookingError as e:
            logger.warning("sweep_complete_failed", booking_id=row.id, kind=e.kind, error=e.message)

    record_sweep_action("completed", completed)
    if completed:
        logger.info("finished_bookings_completed", count=completed, today=today.isoformat())
    return completed


async def reconcile_ledgers(db: AsyncSession, catalog: Optional[CatalogProvider] = None) -> int:
    """Rebuild every batch counter from live bookings. Returns the number of batches reconciled."""
    catalog = catalog or SqlCatalog(db)
    result = await db.execute(select(BatchCapacity.batch_id, BatchCapacity.capacity))
    rows = result.all()
    await db.commit()

    reconciled = 0
    for row in rows:
        batch = await catalog.get_batch(row.batch_id)
        capacity = batch.capacity if batch is not None else row.capacity
        try:
            async with batch_lock(row.batch_id):
                try:
                    await ledger_service.reconcile(db, row.batch_id, capacity)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    raise
        except BookingError as e:
            logger.warning("sweep_reconcile_failed", batch_id=row.batch_id, kind=e.kind, error=e.message)
            continue
        await invalidate_availability(row.batch_id)
        reconciled += 1
    return reconciled


async def sweep_once(db: AsyncSession) -> dict:
    return {
        "expired": await expire_stale_payments(db),
        "completed": await complete_finished_bookings(db),
        "reconciled": await reconcile_ledgers(db),
    }


async def run_sweeper(
    session_factory: async_sessionmaker[AsyncSession],
    stop_event: asyncio.Event,
    interval: Optional[float] = None,
) -> None:
    """Run sweep cycles until stop_event is set."""
    interval = interval or get_settings().SWEEP_INTERVAL_SECONDS
    logger.info("sweeper_started", interval_seconds=interval)

    while not stop_event.is_set():
        try:
            async with session_factory() as db:
                summary = await sweep_once(db)
            logger.debug("sweep_completed", **summary)
        except Exception:
            # Keep the loop alive; the next cycle retries
            logger.exception("sweep_failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass

    logger.info("sweeper_stopped")
