"""
Approval workflow: an academy actor approves or rejects a slot_booked booking.
Rejecting frees the booking's seats in the same commit.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.exceptions import Forbidden, NotEligible, ValidationError
from academy_booking.core.logging import get_logger
from academy_booking.domain.state_machine import BookingEvent, BookingStatus
from academy_booking.models.booking import Booking
from academy_booking.services.catalog_service import SqlIdentity
from academy_booking.services.interfaces.identity import IdentityProvider
from academy_booking.services.interfaces.notifier import LogNotifier, Notifier, notify_safely
from academy_booking.services.transition_service import booking_lock, commit_transition, load_booking

logger = get_logger(__name__)

MAX_REASON_LENGTH = 500


async def decide(
    db: AsyncSession,
    *,
    booking_id: str,
    actor_id: str,
    approve: bool,
    reason: Optional[str] = None,
    identity: Optional[IdentityProvider] = None,
    notifier: Optional[Notifier] = None,
) -> Booking:
    identity = identity or SqlIdentity(db)
    notifier = notifier or LogNotifier()

    if not approve:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to reject a booking")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(f"Reject reason must be at most {MAX_REASON_LENGTH} characters")

    async with booking_lock(booking_id):
        booking = await load_booking(db, booking_id)

        if not await identity.is_authorized_for_center(actor_id, booking.center_id):
            logger.warning("approval_forbidden", booking_id=booking_id, actor_id=actor_id)
            raise Forbidden("Not authorized to manage bookings of this center", booking_id=booking_id)

        if booking.status != BookingStatus.SLOT_BOOKED.value:
            raise NotEligible(
                f"Booking cannot be {'approved' if approve else 'rejected'} in status '{booking.status}'",
                booking_id=booking_id,
                status=booking.status,
            )

        if approve:
            await commit_transition(db, booking, BookingEvent.APPROVE)
        else:
            await commit_transition(db, booking, BookingEvent.REJECT, reject_reason=reason)

    logger.info(
        "booking_decided",
        booking_id=booking.id,
        actor_id=actor_id,
        decision="approved" if approve else "rejected",
    )
    await notify_safely(notifier, "booking.approved" if approve else "booking.rejected", booking)
    return booking
