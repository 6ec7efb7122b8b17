"""
Booking model: a reservation of one or more seats in a batch.

Key design decisions:
- status/payment_status are stored as plain strings but only ever written
  through the state machine; `state` refuses unreachable pairs on load
- `version` is the ORM version counter, so two writers racing on the same
  booking cannot both commit a transition
- `is_active` is true only while the booking holds seats; `is_deleted` is
  an administrative visibility flag and never frees capacity
- order_id is unique across bookings; payment_confirmations records each
  processed order so redelivered gateway callbacks are no-ops
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from academy_booking.db.base import Base, TimestampMixin
from academy_booking.domain.state_machine import BookingState, BookingStatus, PaymentStatus

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in BookingStatus)
_PAYMENT_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in PaymentStatus)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    batch_id = Column(String(64), nullable=False, index=True)
    center_id = Column(String(64), nullable=False, index=True)
    sport_id = Column(String(64), nullable=True)
    seat_count = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.SLOT_BOOKED.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.NOT_INITIATED.value)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    price_breakdown = Column(JSON, nullable=True)

    # Gateway references, null until payment starts
    order_id = Column(String(64), nullable=True, unique=True)
    order_receipt = Column(String(64), nullable=True)
    payment_id = Column(String(64), nullable=True)
    payment_signature = Column(String(128), nullable=True)
    payment_method = Column(String(32), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    payment_initiated_at = Column(DateTime(timezone=True), nullable=True)
    payment_failed_count = Column(Integer, nullable=False, default=0)
    payment_failure_reason = Column(String(255), nullable=True)

    reservation_token = Column(String(36), nullable=True)

    notes = Column(String(1000), nullable=True)
    reject_reason = Column(String(500), nullable=True)
    cancelled_by = Column(String(64), nullable=True)
    cancellation_reason = Column(String(500), nullable=True)
    refund_pending = Column(Boolean, nullable=False, default=False)

    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    version = Column(Integer, nullable=False)

    participant_links = relationship(
        "BookingParticipant",
        back_populates="booking",
        order_by="BookingParticipant.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version, "eager_defaults": True}

    __table_args__ = (
        CheckConstraint("seat_count > 0", name="check_booking_seat_count_positive"),
        CheckConstraint("amount >= 0", name="check_booking_amount_non_negative"),
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_booking_status"),
        CheckConstraint(f"payment_status IN ({_PAYMENT_STATUS_VALUES})", name="check_booking_payment_status"),
        CheckConstraint(
            "status != 'cancelled' OR is_active = false",
            name="check_cancelled_inactive",
        ),
        Index("ix_bookings_batch_active", "batch_id", "is_active", "is_deleted"),
        Index("ix_bookings_status_payment", "status", "payment_status"),
        Index("ix_bookings_center_created", "center_id", "created_at"),
    )

    @property
    def state(self) -> BookingState:
        return BookingState(BookingStatus(self.status), PaymentStatus(self.payment_status))

    def apply_state(self, state: BookingState) -> None:
        self.status = state.status.value
        self.payment_status = state.payment_status.value
        self.is_active = state.holds_capacity

    @property
    def participant_ids(self) -> list[str]:
        return [link.participant_id for link in self.participant_links]

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, batch={self.batch_id}, status={self.status}/{self.payment_status})>"


class BookingParticipant(Base):
    __tablename__ = "booking_participants"

    booking_id = Column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True)
    participant_id = Column(String(64), primary_key=True)
    batch_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False)

    booking = relationship("Booking", back_populates="participant_links")

    __table_args__ = (
        Index("ix_booking_participants_batch_participant", "batch_id", "participant_id"),
    )


class PaymentConfirmation(Base):
    """Persisted 'already processed' marker, one row per confirmed order."""

    __tablename__ = "payment_confirmations"

    order_id = Column(String(64), primary_key=True)
    payment_id = Column(String(64), nullable=False)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_payment_confirmation_booking"),
    )
