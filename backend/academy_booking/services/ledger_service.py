"""
Capacity ledger: the single source of truth for "is there room in this batch".

CONCURRENCY STRATEGY: Conditional Update with Retry
===================================================

Problem:
  Two parents try to book the last two seats of a batch simultaneously.
  Both read committed=8 of capacity=10, both add 2, both succeed.
  Result: 12 children in a 10-seat batch.

Solution:
  The per-batch counter lives in `batch_capacity` and is only changed by

    UPDATE batch_capacity
       SET committed = committed + :n, version = version + 1
     WHERE batch_id = :batch AND version = :v AND committed + :n <= :capacity

  If no row matched, another writer got there first: re-read and retry
  (bounded by LEDGER_MAX_RETRIES). The WHERE clause is the serialization
  point across service instances; the CHECK constraint committed >= 0 is
  the final safety net on release.

  Inside one process the callers of a batch are additionally serialized by
  an asyncio lock (see core.locks) taken by the reservation engine, so
  retries only happen between instances.

Release:
  Every successful reserve writes a `reservation_holds` row and returns its
  token. Release marks the hold released (only if it was still open) and
  decrements the counter in the same transaction, so releasing a token
  twice never double-frees seats.

Reconciliation:
  The counter is never trusted blindly: reconcile() recomputes it from the
  active, non-deleted bookings of the batch and overwrites it, under the
  same version condition as a reservation.

The ledger never commits. Callers make the ledger change and the booking
change one atomic unit.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import Busy, CapacityExceeded
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import ledger_retries, record_ledger_operation
from academy_booking.models.booking import Booking
from academy_booking.models.capacity import BatchCapacity, ReservationHold

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReservationToken:
    token: str
    batch_id: str
    seats: int


async def live_committed_seats(db: AsyncSession, batch_id: str) -> int:
    """Seats held by active, non-deleted bookings, computed from the bookings themselves."""
    result = await db.execute(
        select(func.coalesce(func.sum(Booking.seat_count), 0)).where(
            Booking.batch_id == batch_id,
            Booking.is_active.is_(True),
            Booking.is_deleted.is_(False),
        )
    )
    return int(result.scalar_one())


async def _load(db: AsyncSession, batch_id: str) -> BatchCapacity | None:
    result = await db.execute(
        select(BatchCapacity)
        .where(BatchCapacity.batch_id == batch_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _load_or_create(db: AsyncSession, batch_id: str, capacity: int, seat_count: int) -> BatchCapacity:
    row = await _load(db, batch_id)
    if row is not None:
        return row

    committed = await live_committed_seats(db, batch_id)
    row = BatchCapacity(batch_id=batch_id, capacity=capacity, committed=committed, version=1)
    db.add(row)
    try:
        await db.flush()
    except IntegrityError:
        # Another instance created the row between our read and insert
        await db.rollback()
        logger.info("ledger_row_created_concurrently", batch_id=batch_id)
        raise CapacityExceeded(
            batch_id,
            seat_count,
            max(capacity - committed, 0),
            message="Batch is in high demand. Please try again.",
        )
    logger.info("ledger_row_created", batch_id=batch_id, capacity=capacity, committed=committed)
    return row


async def try_reserve(
    db: AsyncSession,
    batch_id: str,
    seat_count: int,
    capacity: int,
) -> ReservationToken:
    """
    Commit `seat_count` seats against the batch if they fit.
    Raises CapacityExceeded (with the current free-seat count) otherwise.
    """
    if seat_count <= 0:
        raise ValueError("seat_count must be positive")

    max_attempts = get_settings().LEDGER_MAX_RETRIES
    row = await _load_or_create(db, batch_id, capacity, seat_count)

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            row = await _load(db, batch_id)

        if row.committed + seat_count > capacity:
            free_seats = max(capacity - row.committed, 0)
            logger.warning(
                "ledger_reserve_rejected",
                batch_id=batch_id,
                requested=seat_count,
                committed=row.committed,
                capacity=capacity,
            )
            record_ledger_operation("reserve", "rejected")
            raise CapacityExceeded(batch_id, seat_count, free_seats)

        result = await db.execute(
            update(BatchCapacity)
            .where(
                BatchCapacity.batch_id == batch_id,
                BatchCapacity.version == row.version,
                BatchCapacity.committed + seat_count <= capacity,
            )
            .values(
                committed=BatchCapacity.committed + seat_count,
                capacity=capacity,
                version=BatchCapacity.version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            ledger_retries.inc()
            logger.info("ledger_retry", batch_id=batch_id, attempt=attempt, reason="version_conflict")
            continue

        hold = ReservationHold(batch_id=batch_id, seats=seat_count)
        db.add(hold)
        await db.flush()

        record_ledger_operation("reserve", "ok")
        logger.info(
            "ledger_reserved",
            batch_id=batch_id,
            seats=seat_count,
            token=hold.token,
            committed=row.committed + seat_count,
            capacity=capacity,
            attempt=attempt,
        )
        return ReservationToken(token=hold.token, batch_id=batch_id, seats=seat_count)

    record_ledger_operation("reserve", "contention")
    raise CapacityExceeded(
        batch_id,
        seat_count,
        max(capacity - row.committed, 0),
        message="Batch is in high demand. Please try again.",
    )


async def release(db: AsyncSession, token: str | None) -> bool:
    """
    Return the seats of a hold to its batch.
    Returns False (and changes nothing) when the token is unknown or already released.
    """
    if not token:
        return False

    result = await db.execute(
        select(ReservationHold)
        .where(ReservationHold.token == token)
        .execution_options(populate_existing=True)
    )
    hold = result.scalar_one_or_none()
    if hold is None:
        logger.warning("ledger_release_unknown_token", token=token)
        record_ledger_operation("release", "unknown")
        return False

    closed = await db.execute(
        update(ReservationHold)
        .where(ReservationHold.token == token, ReservationHold.released_at.is_(None))
        .values(released_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    if closed.rowcount == 0:
        logger.info("ledger_release_noop", token=token, batch_id=hold.batch_id)
        record_ledger_operation("release", "noop")
        return False

    decremented = await db.execute(
        update(BatchCapacity)
        .where(
            BatchCapacity.batch_id == hold.batch_id,
            BatchCapacity.committed >= hold.seats,
        )
        .values(
            committed=BatchCapacity.committed - hold.seats,
            version=BatchCapacity.version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if decremented.rowcount == 0:
        # Counter already below the hold; reconcile() will rebuild it from bookings
        logger.error("ledger_release_underflow", token=token, batch_id=hold.batch_id, seats=hold.seats)
        record_ledger_operation("release", "underflow")
        return True

    record_ledger_operation("release", "ok")
    logger.info("ledger_released", batch_id=hold.batch_id, seats=hold.seats, token=token)
    return True


async def committed_seats(db: AsyncSession, batch_id: str) -> int:
    row = await _load(db, batch_id)
    if row is None:
        return await live_committed_seats(db, batch_id)
    return row.committed


async def free_seats(db: AsyncSession, batch_id: str, capacity: int) -> int:
    return max(capacity - await committed_seats(db, batch_id), 0)


async def reconcile(db: AsyncSession, batch_id: str, capacity: int) -> BatchCapacity:
    """
    Rebuild the batch counter from the live bookings and log any drift.

    The overwrite is conditional on the version read before counting, so a
    reservation committed by another instance mid-count forces a recount
    instead of being lost.
    """
    max_attempts = get_settings().LEDGER_MAX_RETRIES

    for attempt in range(1, max_attempts + 1):
        row = await _load(db, batch_id)
        live = await live_committed_seats(db, batch_id)

        if row is None:
            row = BatchCapacity(batch_id=batch_id, capacity=capacity, committed=live, version=1)
            db.add(row)
            await db.flush()
            record_ledger_operation("reconcile", "created")
            return row

        if row.committed == live and row.capacity == capacity:
            record_ledger_operation("reconcile", "ok")
            return row

        logger.warning(
            "ledger_drift_detected",
            batch_id=batch_id,
            ledger_committed=row.committed,
            live_committed=live,
            capacity=capacity,
        )
        result = await db.execute(
            update(BatchCapacity)
            .where(BatchCapacity.batch_id == batch_id, BatchCapacity.version == row.version)
            .values(committed=live, capacity=capacity, version=BatchCapacity.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            record_ledger_operation("reconcile", "drift")
            return await _load(db, batch_id)

        ledger_retries.inc()
        logger.info("ledger_retry", batch_id=batch_id, attempt=attempt, reason="reconcile_conflict")

    record_ledger_operation("reconcile", "contention")
    raise Busy("Batch ledger is being updated by another request. Please try again.", batch_id=batch_id)
