"""
Capacity ledger tables.

Key design decisions:
- `batch_capacity.committed` counts seats held by active bookings; the
  conditional UPDATE on (committed + n <= capacity, version) is the
  serialization point for concurrent reservations
- one `reservation_holds` row per successful reserve; `released_at` makes
  release idempotent per token
- CHECK constraints are the final safety net against over- and under-flow
"""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, func

from academy_booking.db.base import Base


class BatchCapacity(Base):
    __tablename__ = "batch_capacity"

    batch_id = Column(String(64), primary_key=True)
    capacity = Column(Integer, nullable=False)
    committed = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("committed >= 0", name="check_committed_non_negative"),
        CheckConstraint("capacity >= 0", name="check_capacity_non_negative"),
    )

    @property
    def free_seats(self) -> int:
        return max(self.capacity - self.committed, 0)

    def __repr__(self) -> str:
        return f"<BatchCapacity(batch={self.batch_id}, committed={self.committed}/{self.capacity})>"


class ReservationHold(Base):
    __tablename__ = "reservation_holds"

    token = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id = Column(String(64), nullable=False)
    seats = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    released_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("seats > 0", name="check_hold_seats_positive"),
        Index("ix_reservation_holds_batch_open", "batch_id", "released_at"),
    )
