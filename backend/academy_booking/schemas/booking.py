"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    batch_id: str = Field(..., min_length=1, max_length=64)
    participant_ids: list[str] = Field(..., min_length=1, max_length=20)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    id: str
    user_id: str
    batch_id: str
    center_id: str
    sport_id: Optional[str]
    participant_ids: list[str]
    seat_count: int
    status: str
    payment_status: str
    amount: Decimal
    currency: str
    price_breakdown: Optional[dict]
    order_id: Optional[str]
    payment_id: Optional[str]
    payment_method: Optional[str]
    paid_at: Optional[datetime]
    payment_failed_count: int
    notes: Optional[str]
    reject_reason: Optional[str]
    cancellation_reason: Optional[str]
    refund_pending: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNextPage: bool
    hasPrevPage: bool


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    pagination: Pagination


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class BookingReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class BatchAvailabilityResponse(BaseModel):
    batch_id: str
    capacity: int
    committed: int
    free_seats: int
    cached: bool = False


class BookingSummaryRequest(BaseModel):
    batch_id: str = Field(..., min_length=1, max_length=64)
    participant_ids: list[str] = Field(..., min_length=1, max_length=20)


class SummaryBatch(BaseModel):
    id: str
    name: str
    sport_id: Optional[str]
    center_id: str
    center_name: str
    requires_approval: bool


class SummaryParticipant(BaseModel):
    id: str
    name: str


class BookingSummaryResponse(BaseModel):
    batch: SummaryBatch
    participants: list[SummaryParticipant]
    seat_count: int
    free_seats: int
    amount: Decimal
    currency: str
    price_breakdown: dict
