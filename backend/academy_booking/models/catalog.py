"""
Catalog records owned by the academy/catalog services.

This service reads them to validate eligibility and capacity and never
writes them. They live here so the default SQL-backed collaborators and
the test suite share one schema.
"""

from sqlalchemy import JSON, Boolean, Column, Date, ForeignKey, Integer, Numeric, String

from academy_booking.db.base import Base, TimestampMixin


class Center(Base, TimestampMixin):
    __tablename__ = "centers"

    id = Column(String(64), primary_key=True)
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    allowed_genders = Column(JSON, nullable=False, default=list)
    allowed_disabled = Column(Boolean, nullable=False, default=True)
    is_only_for_disabled = Column(Boolean, nullable=False, default=False)


class Batch(Base, TimestampMixin):
    __tablename__ = "batches"

    id = Column(String(64), primary_key=True)
    center_id = Column(String(64), ForeignKey("centers.id"), nullable=False, index=True)
    sport_id = Column(String(64), nullable=True)
    name = Column(String(255), nullable=False)
    capacity = Column(Integer, nullable=False)
    age_min = Column(Integer, nullable=False, default=0)
    age_max = Column(Integer, nullable=False, default=100)
    allowed_genders = Column(JSON, nullable=False, default=list)
    is_allowed_disabled = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), nullable=False, default="draft")  # published, draft
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    requires_approval = Column(Boolean, nullable=False, default=True)
    admission_fee = Column(Numeric(12, 2), nullable=False, default=0)
    base_price = Column(Numeric(12, 2), nullable=False, default=0)
    discounted_price = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="INR")


class Participant(Base, TimestampMixin):
    __tablename__ = "participants"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)
    dob = Column(Date, nullable=True)
    gender = Column(String(20), nullable=True)
    has_disability = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
