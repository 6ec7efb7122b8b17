"""Initial schema: catalog records, bookings, capacity ledger, payment confirmations.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = (
    "requested", "pending", "slot_booked", "payment_pending", "approved",
    "rejected", "confirmed", "cancelled", "completed",
)
PAYMENT_STATUSES = (
    "not_initiated", "initiated", "pending", "processing",
    "success", "failed", "refunded", "cancelled",
)


def _in(column: str, values: tuple) -> str:
    return f"{column} IN ({', '.join(repr(v) for v in values)})"


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Catalog records (read-only for this service)
    op.create_table(
        "centers",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("owner_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("allowed_genders", sa.JSON(), nullable=False),
        sa.Column("allowed_disabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_only_for_disabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_centers_owner_id", "centers", ["owner_id"])

    op.create_table(
        "batches",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("center_id", sa.String(64), sa.ForeignKey("centers.id"), nullable=False),
        sa.Column("sport_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("age_min", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("age_max", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("allowed_genders", sa.JSON(), nullable=False),
        sa.Column("is_allowed_disabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("admission_fee", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discounted_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        *_timestamps(),
    )
    op.create_index("ix_batches_center_id", "batches", ["center_id"])

    op.create_table(
        "participants",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("dob", sa.Date(), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("has_disability", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_participants_user_id", "participants", ["user_id"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("center_id", sa.String(64), nullable=False),
        sa.Column("sport_id", sa.String(64), nullable=True),
        sa.Column("seat_count", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="slot_booked"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="not_initiated"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("price_breakdown", sa.JSON(), nullable=True),
        sa.Column("order_id", sa.String(64), nullable=True),
        sa.Column("order_receipt", sa.String(64), nullable=True),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column("payment_signature", sa.String(128), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_initiated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_failed_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_failure_reason", sa.String(255), nullable=True),
        sa.Column("reservation_token", sa.String(36), nullable=True),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("reject_reason", sa.String(500), nullable=True),
        sa.Column("cancelled_by", sa.String(64), nullable=True),
        sa.Column("cancellation_reason", sa.String(500), nullable=True),
        sa.Column("refund_pending", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("seat_count > 0", name="check_booking_seat_count_positive"),
        sa.CheckConstraint("amount >= 0", name="check_booking_amount_non_negative"),
        sa.CheckConstraint(_in("status", BOOKING_STATUSES), name="check_booking_status"),
        sa.CheckConstraint(_in("payment_status", PAYMENT_STATUSES), name="check_booking_payment_status"),
        sa.CheckConstraint("status != 'cancelled' OR is_active = false", name="check_cancelled_inactive"),
        sa.UniqueConstraint("order_id", name="uq_bookings_order_id"),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_batch_id", "bookings", ["batch_id"])
    op.create_index("ix_bookings_center_id", "bookings", ["center_id"])
    # Live-seat sums and duplicate-enrollment checks filter on these three
    op.create_index("ix_bookings_batch_active", "bookings", ["batch_id", "is_active", "is_deleted"])
    # The stale-payment sweep scans payment_pending bookings
    op.create_index("ix_bookings_status_payment", "bookings", ["status", "payment_status"])
    op.create_index("ix_bookings_center_created", "bookings", ["center_id", "created_at"])

    op.create_table(
        "booking_participants",
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("participant_id", sa.String(64), primary_key=True),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_booking_participants_batch_participant", "booking_participants", ["batch_id", "participant_id"]
    )

    op.create_table(
        "payment_confirmations",
        sa.Column("order_id", sa.String(64), primary_key=True),
        sa.Column("payment_id", sa.String(64), nullable=False),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("booking_id", name="uq_payment_confirmation_booking"),
    )

    # Capacity ledger
    op.create_table(
        "batch_capacity",
        sa.Column("batch_id", sa.String(64), primary_key=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("committed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("committed >= 0", name="check_committed_non_negative"),
        sa.CheckConstraint("capacity >= 0", name="check_capacity_non_negative"),
    )

    op.create_table(
        "reservation_holds",
        sa.Column("token", sa.String(36), primary_key=True),
        sa.Column("batch_id", sa.String(64), nullable=False),
        sa.Column("seats", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("seats > 0", name="check_hold_seats_positive"),
    )
    op.create_index("ix_reservation_holds_batch_open", "reservation_holds", ["batch_id", "released_at"])


def downgrade() -> None:
    op.drop_table("reservation_holds")
    op.drop_table("batch_capacity")
    op.drop_table("payment_confirmations")
    op.drop_table("booking_participants")
    op.drop_table("bookings")
    op.drop_table("participants")
    op.drop_table("batches")
    op.drop_table("centers")
