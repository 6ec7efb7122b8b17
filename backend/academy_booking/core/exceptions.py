"""
Booking error taxonomy.

Every error carries a stable ``kind`` and a human-readable message. Errors
that describe a violated constraint (capacity, eligibility, transition)
also carry the constraint in ``details`` so clients can react without
re-deriving it. The API layer renders them as::

    {"error": {"kind": "...", "message": "...", **details}}
"""

from typing import Any, Optional


class BookingError(Exception):
    kind = "booking_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, **self.details}


class ValidationError(BookingError):
    """Bad input or eligibility failure. Recoverable by correcting the input."""

    kind = "validation_error"

    def __init__(self, message: str, violations: Optional[list[dict]] = None, **details: Any):
        if violations:
            details["violations"] = violations
        super().__init__(message, **details)


class NotFound(BookingError):
    kind = "not_found"
    status_code = 404


class Forbidden(BookingError):
    kind = "forbidden"
    status_code = 403


class CapacityExceeded(BookingError):
    """Transient: may succeed on retry once seats free up."""

    kind = "capacity_exceeded"
    status_code = 409

    def __init__(self, batch_id: str, requested: int, free_seats: Optional[int], message: Optional[str] = None):
        if message is None:
            message = (
                f"Insufficient seats available. Only {free_seats} seat(s) remaining. "
                f"Requested: {requested}"
            )
        super().__init__(message, batch_id=batch_id, requested=requested, free_seats=free_seats)
        self.free_seats = free_seats
        self.requested = requested


class InvalidTransition(BookingError):
    kind = "invalid_transition"

    def __init__(self, status: str, payment_status: Optional[str], event: str):
        super().__init__(
            f"Cannot apply '{event}' to a booking in status '{status}'",
            status=status,
            payment_status=payment_status,
            event=event,
        )
        self.status = status
        self.event = event


class InvalidBookingState(BookingError):
    """A stored (status, payment_status) pair that the state machine cannot reach."""

    kind = "invalid_booking_state"
    status_code = 500


class SignatureError(BookingError):
    """Possible tampering. Never retried automatically."""

    kind = "signature_error"


class PaymentFailed(BookingError):
    kind = "payment_failed"


class GatewayError(BookingError):
    kind = "gateway_error"
    status_code = 502

    def __init__(self, message: str, retryable: bool = True, **details: Any):
        super().__init__(message, retryable=retryable, **details)
        self.retryable = retryable


class NotCancellable(BookingError):
    kind = "not_cancellable"


class NotEligible(BookingError):
    kind = "not_eligible"
    status_code = 409


class Busy(BookingError):
    """Another request holds the booking's transition lock."""

    kind = "busy"
    status_code = 409
