from academy_booking.models.catalog import Batch, Center, Participant
from academy_booking.models.booking import Booking, BookingParticipant, PaymentConfirmation
from academy_booking.models.capacity import BatchCapacity, ReservationHold

__all__ = [
    "Batch", "Center", "Participant",
    "Booking", "BookingParticipant", "PaymentConfirmation",
    "BatchCapacity", "ReservationHold",
]
