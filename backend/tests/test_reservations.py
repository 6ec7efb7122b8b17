"""
Tests for the reservation engine: validation, eligibility, pricing and
capacity under concurrent requests.
"""

import asyncio
from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from academy_booking.core.config import get_settings
from academy_booking.core.exceptions import CapacityExceeded, Forbidden, NotFound, ValidationError
from academy_booking.models import Booking, BookingParticipant
from academy_booking.services import ledger_service, reservation_service
from academy_booking.services.interfaces.catalog import BatchInfo, CenterInfo
from academy_booking.services.transition_service import batch_lock

PARENT_ID = "parent-1"
OTHER_PARENT_ID = "parent-2"


async def _booking_count(db_session) -> int:
    return (await db_session.execute(select(func.count(Booking.id)))).scalar_one()


@pytest.mark.asyncio
async def test_reserve_creates_slot_booked_booking(db_session, batch, make_participants):
    kids = await make_participants(PARENT_ID, 2)

    booking = await reservation_service.reserve(
        db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids, notes="Evening slot please"
    )

    assert booking.status == "slot_booked"
    assert booking.payment_status == "not_initiated"
    assert booking.is_active is True
    assert booking.seat_count == 2
    assert booking.participant_ids == kids
    assert booking.amount == Decimal("2000.00")
    assert booking.center_id == batch.center_id
    assert booking.reservation_token
    assert await ledger_service.committed_seats(db_session, batch.id) == 2


@pytest.mark.asyncio
async def test_reserve_without_approval_starts_approved(db_session, make_batch, make_participants):
    batch = await make_batch(requires_approval=False)
    kids = await make_participants(PARENT_ID, 1)

    booking = await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)

    assert booking.status == "approved"
    assert booking.payment_status == "not_initiated"


@pytest.mark.asyncio
async def test_last_seats_race_scenario(session_factory, make_batch, make_participants):
    """Two parents race for the last 3 seats with 2 children each: one wins, one sees 1 free seat."""
    batch = await make_batch(capacity=10)
    first = await make_participants("parent-a", 2)
    second = await make_participants("parent-b", 2)

    async with session_factory() as session:
        await ledger_service.try_reserve(session, batch.id, 7, batch.capacity)
        await session.commit()

    async def attempt(user_id, kids):
        async with session_factory() as session:
            try:
                return await reservation_service.reserve(
                    session, user_id=user_id, batch_id=batch.id, participant_ids=kids
                )
            except CapacityExceeded as e:
                return e

    results = await asyncio.gather(attempt("parent-a", first), attempt("parent-b", second))

    bookings = [r for r in results if isinstance(r, Booking)]
    errors = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(bookings) == 1
    assert len(errors) == 1
    assert errors[0].free_seats == 1

    async with session_factory() as session:
        assert await ledger_service.committed_seats(session, batch.id) == 9
        count = (await session.execute(select(func.count(Booking.id)))).scalar_one()
        assert count == 1


@pytest.mark.asyncio
async def test_many_parents_never_overfill_batch(session_factory, make_batch, make_participants):
    batch = await make_batch(capacity=5)
    parents = [f"parent-{i}" for i in range(8)]
    kids = {p: await make_participants(p, 1) for p in parents}

    async def attempt(user_id):
        async with session_factory() as session:
            try:
                await reservation_service.reserve(
                    session, user_id=user_id, batch_id=batch.id, participant_ids=kids[user_id]
                )
                return True
            except CapacityExceeded:
                return False

    results = await asyncio.gather(*[attempt(p) for p in parents])

    assert results.count(True) == 5
    async with session_factory() as session:
        assert await ledger_service.committed_seats(session, batch.id) == 5
        assert await ledger_service.live_committed_seats(session, batch.id) == 5


@pytest.mark.asyncio
async def test_failed_reservation_leaves_nothing_behind(db_session, make_batch, make_participants):
    batch = await make_batch(capacity=2)
    kids = await make_participants(PARENT_ID, 3)

    with pytest.raises(CapacityExceeded):
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)

    assert await _booking_count(db_session) == 0
    assert await ledger_service.committed_seats(db_session, batch.id) == 0


@pytest.mark.asyncio
async def test_double_enrollment_rejected(db_session, batch, make_participants):
    kids = await make_participants(PARENT_ID, 2)
    await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids[:1])

    with pytest.raises(ValidationError) as exc_info:
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)

    assert exc_info.value.details["participant_ids"] == [kids[0]]
    assert await ledger_service.committed_seats(db_session, batch.id) == 1


@pytest.mark.asyncio
async def test_duplicate_participant_in_request_rejected(db_session, batch, make_participants):
    kids = await make_participants(PARENT_ID, 1)

    with pytest.raises(ValidationError):
        await reservation_service.reserve(
            db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=[kids[0], kids[0]]
        )


@pytest.mark.asyncio
async def test_empty_participant_list_rejected(db_session, batch):
    with pytest.raises(ValidationError):
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=[])


@pytest.mark.asyncio
async def test_unknown_batch(db_session, make_participants):
    kids = await make_participants(PARENT_ID, 1)
    with pytest.raises(NotFound):
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id="missing", participant_ids=kids)


@pytest.mark.asyncio
async def test_unknown_participant(db_session, batch):
    with pytest.raises(NotFound) as exc_info:
        await reservation_service.reserve(
            db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=["ghost"]
        )
    assert exc_info.value.details["participant_ids"] == ["ghost"]


@pytest.mark.asyncio
async def test_participant_of_another_user_forbidden(db_session, batch, make_participants):
    kids = await make_participants(OTHER_PARENT_ID, 1)
    with pytest.raises(Forbidden):
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)


@pytest.mark.asyncio
@pytest.mark.parametrize("overrides", [
    {"status": "draft"},
    {"is_active": False},
    {"is_deleted": True},
    {"end_date": date.today() - timedelta(days=1)},
])
async def test_unavailable_batch_rejected(db_session, make_batch, make_participants, overrides):
    batch = await make_batch(**overrides)
    kids = await make_participants(PARENT_ID, 1)

    with pytest.raises(ValidationError):
        await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)
    assert await _booking_count(db_session) == 0


@pytest.mark.asyncio
async def test_eligibility_violations_are_aggregated(db_session, make_batch, make_participants):
    batch = await make_batch(age_min=8, age_max=12, allowed_genders=["female"], is_allowed_disabled=False)
    too_young = await make_participants(PARENT_ID, 1, dob=date(date.today().year - 4, 1, 1), gender="female")
    wrong_gender_disabled = await make_participants(PARENT_ID, 1, gender="male", has_disability=True)

    with pytest.raises(ValidationError) as exc_info:
        await reservation_service.reserve(
            db_session,
            user_id=PARENT_ID,
            batch_id=batch.id,
            participant_ids=too_young + wrong_gender_disabled,
        )

    rules = {(v["participant_id"], v["rule"]) for v in exc_info.value.details["violations"]}
    assert rules == {
        (too_young[0], "age"),
        (wrong_gender_disabled[0], "gender"),
        (wrong_gender_disabled[0], "disability"),
    }
    assert await _booking_count(db_session) == 0


@pytest.mark.asyncio
async def test_participants_are_stored_in_request_order(db_session, batch, make_participants):
    kids = await make_participants(PARENT_ID, 3)
    order = [kids[2], kids[0], kids[1]]

    booking = await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=order)

    links = (await db_session.execute(
        select(BookingParticipant).where(BookingParticipant.booking_id == booking.id).order_by(BookingParticipant.position)
    )).scalars().all()
    assert [link.participant_id for link in links] == order


def _batch_info(**overrides) -> BatchInfo:
    values = dict(
        id="b",
        center=CenterInfo(id="c", name="Center"),
        name="Batch",
        capacity=10,
        base_price=Decimal("1500"),
        admission_fee=Decimal("500"),
    )
    values.update(overrides)
    return BatchInfo(**values)


def test_price_uses_discount_when_set():
    settings = get_settings().model_copy(update={"PLATFORM_FEE": Decimal("0")})
    total, breakdown = reservation_service.calculate_price(
        _batch_info(discounted_price=Decimal("1200")), 2, settings
    )
    assert total == Decimal("3400.00")
    assert breakdown["fee_per_participant"] == "1200.00"


def test_price_ignores_zero_discount():
    settings = get_settings().model_copy(update={"PLATFORM_FEE": Decimal("0")})
    total, _ = reservation_service.calculate_price(_batch_info(discounted_price=Decimal("0")), 1, settings)
    assert total == Decimal("2000.00")


def test_gst_applies_to_platform_fee_only():
    settings = get_settings().model_copy(
        update={"PLATFORM_FEE": Decimal("100"), "GST_PERCENTAGE": Decimal("18"), "GST_ENABLED": True}
    )
    total, breakdown = reservation_service.calculate_price(_batch_info(), 1, settings)

    assert breakdown["gst"] == "18.00"
    assert total == Decimal("2118.00")


@pytest.mark.asyncio
async def test_partial_fit_is_rejected_with_free_seat_count(db_session, make_batch, make_participants):
    """Capacity 2: one child fits, then a pair is refused with 1 seat reported free."""
    batch = await make_batch(capacity=2)
    first = await make_participants(PARENT_ID, 1)
    pair = await make_participants(OTHER_PARENT_ID, 2)

    await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=first)

    with pytest.raises(CapacityExceeded) as exc_info:
        await reservation_service.reserve(db_session, user_id=OTHER_PARENT_ID, batch_id=batch.id, participant_ids=pair)

    assert exc_info.value.free_seats == 1
    assert exc_info.value.requested == 2
    assert await ledger_service.committed_seats(db_session, batch.id) == 1


@pytest.mark.asyncio
async def test_reserve_while_batch_is_locked_reports_high_demand(db_session, batch, make_participants, monkeypatch):
    kids = await make_participants(PARENT_ID, 2)
    monkeypatch.setattr(get_settings(), "LOCK_TIMEOUT_SECONDS", 0.05)

    async with batch_lock(batch.id):
        with pytest.raises(CapacityExceeded) as exc_info:
            await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids)

    assert "high demand" in exc_info.value.message
    assert exc_info.value.requested == 2
    assert exc_info.value.details["batch_id"] == batch.id
    assert await _booking_count(db_session) == 0
    assert await ledger_service.committed_seats(db_session, batch.id) == 0


@pytest.mark.asyncio
async def test_summary_prices_without_holding_seats(db_session, batch, make_participants):
    kids = await make_participants(PARENT_ID, 2)

    summary = await reservation_service.summarize(
        db_session, user_id=PARENT_ID, batch_id=batch.id, participant_ids=kids
    )

    assert summary["batch"]["id"] == batch.id
    assert summary["batch"]["center_name"] == "Riverside Sports Academy"
    assert summary["batch"]["requires_approval"] is True
    assert [p["id"] for p in summary["participants"]] == kids
    assert summary["participants"][0]["name"].endswith("Sharma")
    assert summary["seat_count"] == 2
    assert summary["free_seats"] == 10
    assert summary["amount"] == Decimal("2000.00")
    assert summary["currency"] == "INR"
    assert summary["price_breakdown"]["participant_count"] == 2
    assert await _booking_count(db_session) == 0
    assert await ledger_service.committed_seats(db_session, batch.id) == 0


@pytest.mark.asyncio
async def test_summary_refuses_what_reserve_would_refuse(db_session, make_batch, make_participants):
    small = await make_batch(capacity=2)
    first = await make_participants(PARENT_ID, 1)
    pair = await make_participants(OTHER_PARENT_ID, 2)
    await reservation_service.reserve(db_session, user_id=PARENT_ID, batch_id=small.id, participant_ids=first)

    with pytest.raises(CapacityExceeded) as exc_info:
        await reservation_service.summarize(db_session, user_id=OTHER_PARENT_ID, batch_id=small.id, participant_ids=pair)
    assert exc_info.value.free_seats == 1
    assert exc_info.value.requested == 2

    with pytest.raises(ValidationError):
        await reservation_service.summarize(db_session, user_id=PARENT_ID, batch_id=small.id, participant_ids=first)

    strict = await make_batch(age_min=12, age_max=14)
    with pytest.raises(ValidationError) as exc_info:
        await reservation_service.summarize(db_session, user_id=PARENT_ID, batch_id=strict.id, participant_ids=first)
    assert exc_info.value.details["violations"][0]["rule"] == "age"

    with pytest.raises(Forbidden):
        await reservation_service.summarize(db_session, user_id=PARENT_ID, batch_id=small.id, participant_ids=pair)

    with pytest.raises(NotFound):
        await reservation_service.summarize(db_session, user_id=PARENT_ID, batch_id="no-such-batch", participant_ids=first)
