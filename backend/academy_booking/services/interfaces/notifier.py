"""
Notification collaborator interface.
Delivery is fire-and-forget: a failing notifier never changes booking state.
"""

from abc import ABC, abstractmethod

from academy_booking.core.logging import get_logger

logger = get_logger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def notify(self, event: str, booking) -> None:
        """Deliver a booking event (e.g. booking.reserved)."""


class LogNotifier(Notifier):
    """Default notifier: records the event in the structured log."""

    async def notify(self, event: str, booking) -> None:
        logger.info(
            "booking_notification",
            notification=event,
            booking_id=booking.id,
            user_id=booking.user_id,
            center_id=booking.center_id,
            status=booking.status,
        )


async def notify_safely(notifier: Notifier, event: str, booking) -> None:
    try:
        await notifier.notify(event, booking)
    except Exception as e:
        logger.error("notification_failed", notification=event, booking_id=booking.id, error=str(e))
