"""
Tests for the booking state machine: every (state, event) pair is either
in the transition table or rejected.
"""

import pytest

from academy_booking.core.exceptions import InvalidBookingState, InvalidTransition
from academy_booking.domain.state_machine import (
    LEGAL_STATES,
    BookingEvent,
    BookingState,
    BookingStatus as S,
    PaymentStatus as P,
    initial_state,
    releases_capacity,
    transition,
)

E = BookingEvent

# (status, payment_status, event) -> expected target
EXPECTED = {
    (S.SLOT_BOOKED, P.NOT_INITIATED, E.APPROVE): (S.APPROVED, P.NOT_INITIATED),
    (S.SLOT_BOOKED, P.NOT_INITIATED, E.REJECT): (S.REJECTED, P.NOT_INITIATED),
    (S.APPROVED, P.NOT_INITIATED, E.INITIATE_PAYMENT): (S.PAYMENT_PENDING, P.INITIATED),
    (S.PAYMENT_PENDING, P.INITIATED, E.VERIFY_SUCCESS): (S.CONFIRMED, P.SUCCESS),
    (S.PAYMENT_PENDING, P.PENDING, E.VERIFY_SUCCESS): (S.CONFIRMED, P.SUCCESS),
    (S.PAYMENT_PENDING, P.PROCESSING, E.VERIFY_SUCCESS): (S.CONFIRMED, P.SUCCESS),
    (S.PAYMENT_PENDING, P.FAILED, E.VERIFY_SUCCESS): (S.CONFIRMED, P.SUCCESS),
    (S.PAYMENT_PENDING, P.INITIATED, E.VERIFY_FAIL): (S.PAYMENT_PENDING, P.FAILED),
    (S.PAYMENT_PENDING, P.PENDING, E.VERIFY_FAIL): (S.PAYMENT_PENDING, P.FAILED),
    (S.PAYMENT_PENDING, P.PROCESSING, E.VERIFY_FAIL): (S.PAYMENT_PENDING, P.FAILED),
    (S.PAYMENT_PENDING, P.FAILED, E.VERIFY_FAIL): (S.PAYMENT_PENDING, P.FAILED),
    (S.CONFIRMED, P.SUCCESS, E.COMPLETE): (S.COMPLETED, P.SUCCESS),
    (S.REQUESTED, P.NOT_INITIATED, E.CANCEL): (S.CANCELLED, P.NOT_INITIATED),
    (S.PENDING, P.NOT_INITIATED, E.CANCEL): (S.CANCELLED, P.NOT_INITIATED),
    (S.PENDING, P.PENDING, E.CANCEL): (S.CANCELLED, P.CANCELLED),
    (S.SLOT_BOOKED, P.NOT_INITIATED, E.CANCEL): (S.CANCELLED, P.NOT_INITIATED),
    (S.APPROVED, P.NOT_INITIATED, E.CANCEL): (S.CANCELLED, P.NOT_INITIATED),
    (S.PAYMENT_PENDING, P.INITIATED, E.CANCEL): (S.CANCELLED, P.CANCELLED),
    (S.PAYMENT_PENDING, P.PENDING, E.CANCEL): (S.CANCELLED, P.CANCELLED),
    (S.PAYMENT_PENDING, P.PROCESSING, E.CANCEL): (S.CANCELLED, P.CANCELLED),
    (S.PAYMENT_PENDING, P.FAILED, E.CANCEL): (S.CANCELLED, P.FAILED),
    (S.CONFIRMED, P.SUCCESS, E.CANCEL): (S.CANCELLED, P.REFUNDED),
}

ALL_PAIRS = [
    (status, payment_status, event)
    for status, payment_status in sorted(LEGAL_STATES)
    for event in BookingEvent
]


@pytest.mark.parametrize("status,payment_status,event", ALL_PAIRS)
def test_transition_table_is_complete(status, payment_status, event):
    """Every legal state either moves as tabled or raises InvalidTransition."""
    state = BookingState(status, payment_status)
    expected = EXPECTED.get((status, payment_status, event))

    if expected is None:
        with pytest.raises(InvalidTransition):
            transition(state, event)
    else:
        assert transition(state, event) == BookingState(*expected)


def test_reserve_starts_at_slot_booked():
    assert transition(None, E.RESERVE) == initial_state()
    assert initial_state() == BookingState(S.SLOT_BOOKED, P.NOT_INITIATED)


@pytest.mark.parametrize("event", [e for e in BookingEvent if e is not E.RESERVE])
def test_only_reserve_applies_without_state(event):
    with pytest.raises(InvalidTransition):
        transition(None, event)


def test_verify_fail_with_attempts_exhausted_cancels():
    state = BookingState(S.PAYMENT_PENDING, P.FAILED)
    assert transition(state, E.VERIFY_FAIL, attempts_exhausted=True) == BookingState(S.CANCELLED, P.FAILED)


@pytest.mark.parametrize("status,payment_status", [
    (S.CONFIRMED, P.NOT_INITIATED),
    (S.CANCELLED, P.SUCCESS),
    (S.APPROVED, P.SUCCESS),
    (S.SLOT_BOOKED, P.INITIATED),
])
def test_unreachable_pairs_are_rejected(status, payment_status):
    with pytest.raises(InvalidBookingState):
        BookingState(status, payment_status)


def test_terminal_states_accept_no_events():
    for status, payment_status in LEGAL_STATES:
        state = BookingState(status, payment_status)
        if not state.is_terminal:
            continue
        for event in BookingEvent:
            with pytest.raises(InvalidTransition):
                transition(state, event)


def test_invalid_transition_names_state_and_event():
    with pytest.raises(InvalidTransition) as exc_info:
        transition(BookingState(S.CANCELLED, P.NOT_INITIATED), E.VERIFY_SUCCESS)
    assert exc_info.value.details == {
        "status": "cancelled",
        "payment_status": "not_initiated",
        "event": "verify_success",
    }


def test_capacity_released_when_leaving_holding_statuses():
    slot_booked = BookingState(S.SLOT_BOOKED, P.NOT_INITIATED)
    approved = transition(slot_booked, E.APPROVE)
    rejected = transition(slot_booked, E.REJECT)
    confirmed = BookingState(S.CONFIRMED, P.SUCCESS)

    assert not releases_capacity(slot_booked, approved)
    assert releases_capacity(slot_booked, rejected)
    assert releases_capacity(confirmed, transition(confirmed, E.COMPLETE))
    assert releases_capacity(confirmed, transition(confirmed, E.CANCEL))
