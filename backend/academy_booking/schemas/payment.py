"""
Pydantic schemas for payment order and verification endpoints.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from academy_booking.schemas.booking import BookingResponse


class OrderCreate(BaseModel):
    booking_id: str = Field(..., min_length=1, max_length=36)


class ExternalOrderResponse(BaseModel):
    id: str
    amount: Decimal
    amount_minor: int
    currency: str
    receipt: str
    status: str


class OrderResponse(BaseModel):
    booking: BookingResponse
    external_order: ExternalOrderResponse
    key_id: str


class PaymentVerify(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1, max_length=64)
    razorpay_payment_id: str = Field(..., min_length=1, max_length=64)
    razorpay_signature: str = Field(..., min_length=1, max_length=128)


class PaymentVerifyResponse(BaseModel):
    booking: BookingResponse
    already_processed: bool


class WebhookResponse(BaseModel):
    status: str
    event: str | None = None
    booking_id: str | None = None
    reason: str | None = None
