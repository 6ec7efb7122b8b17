"""
Booking state machine.

A booking's state is the pair (status, payment_status). Only the pairs in
LEGAL_STATES are reachable; BookingState refuses to represent anything
else, so two independently-settable columns can never drift into an
impossible combination.

Transition table (from -> event -> to):

    (none)           reserve           slot_booked
    slot_booked      approve           approved
    slot_booked      reject            rejected          releases seats
    approved         initiate_payment  payment_pending
    payment_pending  verify_success    confirmed
    payment_pending  verify_fail       payment_pending   (retry)
                                       cancelled         (attempts exhausted / timed out)
    confirmed        complete          completed         releases seats
    <non-terminal>   cancel            cancelled         releases seats

The machine is pure. It computes the target state and nothing else;
capacity release, gateway calls and persistence are the caller's job.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from academy_booking.core.exceptions import InvalidBookingState, InvalidTransition


class BookingStatus(str, enum.Enum):
    REQUESTED = "requested"
    PENDING = "pending"
    SLOT_BOOKED = "slot_booked"
    PAYMENT_PENDING = "payment_pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, enum.Enum):
    NOT_INITIATED = "not_initiated"
    INITIATED = "initiated"
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class BookingEvent(str, enum.Enum):
    RESERVE = "reserve"
    APPROVE = "approve"
    REJECT = "reject"
    INITIATE_PAYMENT = "initiate_payment"
    VERIFY_SUCCESS = "verify_success"
    VERIFY_FAIL = "verify_fail"
    COMPLETE = "complete"
    CANCEL = "cancel"


TERMINAL_STATUSES = frozenset({
    BookingStatus.REJECTED,
    BookingStatus.CANCELLED,
    BookingStatus.COMPLETED,
})

# Statuses whose bookings occupy seats in the batch
CAPACITY_HOLDING_STATUSES = frozenset(set(BookingStatus) - TERMINAL_STATUSES)

LEGAL_STATES = frozenset({
    (BookingStatus.REQUESTED, PaymentStatus.NOT_INITIATED),
    (BookingStatus.PENDING, PaymentStatus.NOT_INITIATED),
    (BookingStatus.PENDING, PaymentStatus.PENDING),
    (BookingStatus.SLOT_BOOKED, PaymentStatus.NOT_INITIATED),
    (BookingStatus.APPROVED, PaymentStatus.NOT_INITIATED),
    (BookingStatus.PAYMENT_PENDING, PaymentStatus.INITIATED),
    (BookingStatus.PAYMENT_PENDING, PaymentStatus.PENDING),
    (BookingStatus.PAYMENT_PENDING, PaymentStatus.PROCESSING),
    (BookingStatus.PAYMENT_PENDING, PaymentStatus.FAILED),
    (BookingStatus.CONFIRMED, PaymentStatus.SUCCESS),
    (BookingStatus.COMPLETED, PaymentStatus.SUCCESS),
    (BookingStatus.REJECTED, PaymentStatus.NOT_INITIATED),
    (BookingStatus.CANCELLED, PaymentStatus.NOT_INITIATED),
    (BookingStatus.CANCELLED, PaymentStatus.CANCELLED),
    (BookingStatus.CANCELLED, PaymentStatus.FAILED),
    (BookingStatus.CANCELLED, PaymentStatus.REFUNDED),
})


@dataclass(frozen=True)
class BookingState:
    status: BookingStatus
    payment_status: PaymentStatus

    def __post_init__(self):
        status = BookingStatus(self.status)
        payment_status = PaymentStatus(self.payment_status)
        object.__setattr__(self, "status", status)
        object.__setattr__(self, "payment_status", payment_status)
        if (status, payment_status) not in LEGAL_STATES:
            raise InvalidBookingState(
                f"Unreachable booking state: status={status.value}, payment_status={payment_status.value}",
                status=status.value,
                payment_status=payment_status.value,
            )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def holds_capacity(self) -> bool:
        return self.status in CAPACITY_HOLDING_STATUSES


_SIMPLE_TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.SLOT_BOOKED, BookingEvent.APPROVE): BookingStatus.APPROVED,
    (BookingStatus.SLOT_BOOKED, BookingEvent.REJECT): BookingStatus.REJECTED,
    (BookingStatus.APPROVED, BookingEvent.INITIATE_PAYMENT): BookingStatus.PAYMENT_PENDING,
    (BookingStatus.PAYMENT_PENDING, BookingEvent.VERIFY_SUCCESS): BookingStatus.CONFIRMED,
    (BookingStatus.CONFIRMED, BookingEvent.COMPLETE): BookingStatus.COMPLETED,
}

_TARGET_PAYMENT_STATUS = {
    BookingStatus.APPROVED: PaymentStatus.NOT_INITIATED,
    BookingStatus.REJECTED: PaymentStatus.NOT_INITIATED,
    BookingStatus.PAYMENT_PENDING: PaymentStatus.INITIATED,
    BookingStatus.CONFIRMED: PaymentStatus.SUCCESS,
    BookingStatus.COMPLETED: PaymentStatus.SUCCESS,
}

_CANCELLED_PAYMENT_STATUS = {
    PaymentStatus.NOT_INITIATED: PaymentStatus.NOT_INITIATED,
    PaymentStatus.INITIATED: PaymentStatus.CANCELLED,
    PaymentStatus.PENDING: PaymentStatus.CANCELLED,
    PaymentStatus.PROCESSING: PaymentStatus.CANCELLED,
    PaymentStatus.FAILED: PaymentStatus.FAILED,
    PaymentStatus.SUCCESS: PaymentStatus.REFUNDED,
}


def initial_state() -> BookingState:
    return BookingState(BookingStatus.SLOT_BOOKED, PaymentStatus.NOT_INITIATED)


def transition(
    state: Optional[BookingState],
    event: BookingEvent,
    *,
    attempts_exhausted: bool = False,
) -> BookingState:
    """
    Compute the state reached by applying ``event`` to ``state``.

    ``state`` is None only for ``reserve``. ``attempts_exhausted`` selects
    the cancelling branch of ``verify_fail``. Raises InvalidTransition for
    every (state, event) pair outside the table.
    """
    event = BookingEvent(event)

    if state is None:
        if event is BookingEvent.RESERVE:
            return initial_state()
        raise InvalidTransition("none", None, event.value)

    if event is BookingEvent.CANCEL:
        if state.is_terminal:
            raise _invalid(state, event)
        return BookingState(BookingStatus.CANCELLED, _CANCELLED_PAYMENT_STATUS[state.payment_status])

    if event is BookingEvent.VERIFY_FAIL:
        if state.status is not BookingStatus.PAYMENT_PENDING:
            raise _invalid(state, event)
        if attempts_exhausted:
            return BookingState(BookingStatus.CANCELLED, PaymentStatus.FAILED)
        return BookingState(BookingStatus.PAYMENT_PENDING, PaymentStatus.FAILED)

    target = _SIMPLE_TRANSITIONS.get((state.status, event))
    if target is None:
        raise _invalid(state, event)
    return BookingState(target, _TARGET_PAYMENT_STATUS[target])


def releases_capacity(before: BookingState, after: BookingState) -> bool:
    return before.holds_capacity and not after.holds_capacity


def is_terminal(status: BookingStatus) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def _invalid(state: BookingState, event: BookingEvent) -> InvalidTransition:
    return InvalidTransition(state.status.value, state.payment_status.value, event.value)
