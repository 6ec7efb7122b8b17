"""
Cancellation: the booking's owner or an academy actor of its center
cancels a non-terminal booking and its seats go back to the batch.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.exceptions import Forbidden, NotCancellable, ValidationError
from academy_booking.core.logging import get_logger
from academy_booking.domain.state_machine import BookingEvent, PaymentStatus
from academy_booking.models.booking import Booking
from academy_booking.services.catalog_service import SqlIdentity
from academy_booking.services.interfaces.identity import IdentityProvider
from academy_booking.services.interfaces.notifier import LogNotifier, Notifier, notify_safely
from academy_booking.services.transition_service import booking_lock, commit_transition, load_booking

logger = get_logger(__name__)

MAX_REASON_LENGTH = 500


async def cancel(
    db: AsyncSession,
    *,
    booking_id: str,
    actor_id: str,
    reason: Optional[str] = None,
    identity: Optional[IdentityProvider] = None,
    notifier: Optional[Notifier] = None,
) -> Booking:
    """
    Cancel a booking.

    A booking that was already paid is marked refund_pending; the refund
    itself is settled outside this service.
    """
    identity = identity or SqlIdentity(db)
    notifier = notifier or LogNotifier()

    reason = (reason or "").strip() or None
    if reason and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Cancellation reason must be at most {MAX_REASON_LENGTH} characters")

    async with booking_lock(booking_id):
        booking = await load_booking(db, booking_id)

        if booking.user_id != actor_id and not await identity.is_authorized_for_center(actor_id, booking.center_id):
            logger.warning("cancellation_forbidden", booking_id=booking_id, actor_id=actor_id)
            raise Forbidden("Not authorized to cancel this booking", booking_id=booking_id)

        state = booking.state
        if state.is_terminal:
            raise NotCancellable(
                f"Booking in status '{booking.status}' cannot be cancelled",
                booking_id=booking_id,
                status=booking.status,
            )

        refund_pending = state.payment_status is PaymentStatus.SUCCESS
        await commit_transition(
            db,
            booking,
            BookingEvent.CANCEL,
            cancelled_by=actor_id,
            cancellation_reason=reason,
            refund_pending=refund_pending,
        )

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        actor_id=actor_id,
        by_owner=booking.user_id == actor_id,
        refund_pending=refund_pending,
    )
    await notify_safely(notifier, "booking.cancelled", booking)
    return booking
