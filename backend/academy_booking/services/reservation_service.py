"""
Reservation engine: turns "book these children into this batch" into a
booking that holds seats.

Flow:
  1. validate the request, the batch and every participant (no locks held)
  2. price the booking
  3. under the batch lock: duplicate-enrollment check, ledger reserve,
     booking insert, commit

Step 3 is one unit. If anything fails after the ledger accepted the
seats, the rollback undoes the hold together with the booking, so a
failed reservation never leaves seats behind.
"""

import time
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.config import Settings, get_settings
from academy_booking.core.exceptions import CapacityExceeded, Forbidden, NotFound, ValidationError
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import record_reservation, record_transition, reservation_latency
from academy_booking.domain.state_machine import BookingEvent, transition
from academy_booking.models.booking import Booking, BookingParticipant
from academy_booking.services import ledger_service
from academy_booking.services.cache_service import invalidate_availability
from academy_booking.services.catalog_service import SqlCatalog
from academy_booking.services.eligibility import batch_unavailable_reason, eligibility_violations
from academy_booking.services.interfaces.catalog import BatchInfo, CatalogProvider, ParticipantInfo
from academy_booking.services.interfaces.notifier import LogNotifier, Notifier, notify_safely
from academy_booking.services.transition_service import reservation_lock

logger = get_logger(__name__)

TWO_PLACES = Decimal("0.01")
MAX_NOTES_LENGTH = 1000


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_price(batch: BatchInfo, participant_count: int, settings: Optional[Settings] = None) -> tuple[Decimal, dict]:
    """
    Total charged for `participant_count` seats and its breakdown.

    The per-participant fee is the discounted price when one is set,
    otherwise the base price. GST is charged on the platform fee only.
    """
    settings = settings or get_settings()

    if batch.discounted_price is not None and batch.discounted_price > 0:
        per_participant_fee = Decimal(batch.discounted_price)
    else:
        per_participant_fee = Decimal(batch.base_price)
    admission_fee = Decimal(batch.admission_fee or 0)

    subtotal = (admission_fee + per_participant_fee) * participant_count
    platform_fee = Decimal(settings.PLATFORM_FEE)
    gst = Decimal("0")
    if settings.GST_ENABLED:
        gst = platform_fee * Decimal(settings.GST_PERCENTAGE) / 100

    total = _money(subtotal + platform_fee + gst)
    breakdown = {
        "admission_fee_per_participant": str(_money(admission_fee)),
        "fee_per_participant": str(_money(per_participant_fee)),
        "participant_count": participant_count,
        "subtotal": str(_money(subtotal)),
        "platform_fee": str(_money(platform_fee)),
        "gst_percentage": str(settings.GST_PERCENTAGE) if settings.GST_ENABLED else "0",
        "gst": str(_money(gst)),
        "total": str(total),
        "currency": batch.currency or settings.DEFAULT_CURRENCY,
    }
    return total, breakdown


def _validate_request(participant_ids: Sequence[str], notes: Optional[str]) -> list[str]:
    ids = [str(p).strip() for p in participant_ids or [] if str(p).strip()]
    if not ids:
        raise ValidationError("At least one participant is required")

    duplicates = sorted({p for p in ids if ids.count(p) > 1})
    if duplicates:
        raise ValidationError(
            "Duplicate participants in booking request", participant_ids=duplicates
        )

    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Notes must be at most {MAX_NOTES_LENGTH} characters")
    return ids


async def _already_enrolled(db: AsyncSession, batch_id: str, participant_ids: list[str]) -> list[str]:
    """Participants holding a seat in the batch through another active booking."""
    result = await db.execute(
        select(BookingParticipant.participant_id)
        .join(Booking, Booking.id == BookingParticipant.booking_id)
        .where(
            BookingParticipant.batch_id == batch_id,
            BookingParticipant.participant_id.in_(participant_ids),
            Booking.is_active.is_(True),
            Booking.is_deleted.is_(False),
        )
    )
    return sorted(set(result.scalars().all()))


async def _check_request(
    catalog: CatalogProvider,
    user_id: str,
    batch_id: str,
    ids: list[str],
    today: date,
    settings: Settings,
) -> tuple[BatchInfo, dict[str, ParticipantInfo], Decimal, dict]:
    """Batch, ownership and eligibility checks plus pricing. Reads only."""
    batch = await catalog.get_batch(batch_id)
    if batch is None:
        raise NotFound("Batch not found", batch_id=batch_id)
    reason = batch_unavailable_reason(batch, today)
    if reason:
        raise ValidationError(reason, batch_id=batch_id)

    participants = await catalog.get_participants(ids)
    found = {p.id: p for p in participants}
    missing = [p for p in ids if p not in found]
    if missing:
        raise NotFound("Participants not found", participant_ids=missing)
    foreign = [p for p in ids if found[p].user_id != user_id]
    if foreign:
        raise Forbidden("Participants do not belong to the requesting user", participant_ids=foreign)

    violations = eligibility_violations([found[p] for p in ids], batch, today)
    if violations:
        raise ValidationError("Participants are not eligible for this batch", violations=violations)

    amount, breakdown = calculate_price(batch, len(ids), settings)
    if amount <= 0:
        raise ValidationError("Batch price must be greater than zero", batch_id=batch_id)
    return batch, found, amount, breakdown


def _enrolled_error(found: dict[str, ParticipantInfo], enrolled: list[str]) -> ValidationError:
    names = ", ".join(found[p].display_name for p in enrolled)
    return ValidationError(
        f"Participant(s) {names} already have an active booking for this batch",
        participant_ids=enrolled,
    )


async def summarize(
    db: AsyncSession,
    *,
    user_id: str,
    batch_id: str,
    participant_ids: Sequence[str],
    catalog: Optional[CatalogProvider] = None,
    today: Optional[date] = None,
) -> dict:
    """
    Preview a reservation: run every check `reserve` runs and price it.

    Nothing is written and no seats are held, so a later `reserve` can
    still fail if the batch fills up in between.
    """
    settings = get_settings()
    catalog = catalog or SqlCatalog(db)
    today = today or date.today()

    ids = _validate_request(participant_ids, None)
    batch, found, amount, breakdown = await _check_request(catalog, user_id, batch_id, ids, today, settings)

    free_seats = await ledger_service.free_seats(db, batch_id, batch.capacity)
    if len(ids) > free_seats:
        raise CapacityExceeded(batch_id, len(ids), free_seats)

    enrolled = await _already_enrolled(db, batch_id, ids)
    if enrolled:
        raise _enrolled_error(found, enrolled)

    logger.info("booking_summarized", user_id=user_id, batch_id=batch_id, seats=len(ids), amount=str(amount))
    return {
        "batch": {
            "id": batch.id,
            "name": batch.name,
            "sport_id": batch.sport_id,
            "center_id": batch.center.id,
            "center_name": batch.center.name,
            "requires_approval": batch.requires_approval,
        },
        "participants": [{"id": p, "name": found[p].display_name} for p in ids],
        "seat_count": len(ids),
        "free_seats": free_seats,
        "amount": amount,
        "currency": batch.currency or settings.DEFAULT_CURRENCY,
        "price_breakdown": breakdown,
    }


async def reserve(
    db: AsyncSession,
    *,
    user_id: str,
    batch_id: str,
    participant_ids: Sequence[str],
    notes: Optional[str] = None,
    catalog: Optional[CatalogProvider] = None,
    notifier: Optional[Notifier] = None,
    today: Optional[date] = None,
) -> Booking:
    """
    Reserve one seat per participant in the batch.

    Raises ValidationError, NotFound, Forbidden or CapacityExceeded; on any
    error nothing is persisted and no seats are held.
    """
    start = time.perf_counter()
    settings = get_settings()
    catalog = catalog or SqlCatalog(db)
    notifier = notifier or LogNotifier()
    today = today or date.today()

    try:
        ids = _validate_request(participant_ids, notes)

        batch, found, amount, breakdown = await _check_request(catalog, user_id, batch_id, ids, today, settings)

        events = [BookingEvent.RESERVE]
        state = transition(None, BookingEvent.RESERVE)
        if not batch.requires_approval:
            events.append(BookingEvent.APPROVE)
            state = transition(state, BookingEvent.APPROVE)

        async with reservation_lock(batch_id, len(ids)):
            try:
                enrolled = await _already_enrolled(db, batch_id, ids)
                if enrolled:
                    raise _enrolled_error(found, enrolled)

                token = await ledger_service.try_reserve(db, batch_id, len(ids), batch.capacity)

                booking = Booking(
                    user_id=user_id,
                    batch_id=batch_id,
                    center_id=batch.center.id,
                    sport_id=batch.sport_id,
                    seat_count=len(ids),
                    amount=amount,
                    currency=batch.currency or settings.DEFAULT_CURRENCY,
                    price_breakdown=breakdown,
                    reservation_token=token.token,
                    notes=notes,
                    payment_failed_count=0,
                    refund_pending=False,
                    is_deleted=False,
                )
                booking.apply_state(state)
                booking.participant_links = [
                    BookingParticipant(participant_id=p, batch_id=batch_id, position=i)
                    for i, p in enumerate(ids)
                ]
                db.add(booking)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    except CapacityExceeded:
        record_reservation("capacity_exceeded")
        raise
    except (ValidationError, NotFound, Forbidden):
        record_reservation("validation_error")
        raise
    except Exception:
        record_reservation("error")
        raise
    finally:
        reservation_latency.observe(time.perf_counter() - start)

    record_reservation("success")
    for event in events:
        record_transition(event.value)
    logger.info(
        "booking_reserved",
        booking_id=booking.id,
        user_id=user_id,
        batch_id=batch_id,
        seats=booking.seat_count,
        amount=str(amount),
        status=booking.status,
    )

    await invalidate_availability(batch_id)
    await notify_safely(notifier, "booking.reserved", booking)
    return booking
