from academy_booking.schemas.booking import (
    BatchAvailabilityResponse,
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingReject,
    BookingResponse,
    BookingSummaryRequest,
    BookingSummaryResponse,
    Pagination,
)
from academy_booking.schemas.payment import (
    ExternalOrderResponse,
    OrderCreate,
    OrderResponse,
    PaymentVerify,
    PaymentVerifyResponse,
    WebhookResponse,
)

__all__ = [
    "BookingCreate", "BookingResponse", "BookingListResponse", "BookingCancel", "BookingReject",
    "Pagination", "BatchAvailabilityResponse", "BookingSummaryRequest", "BookingSummaryResponse",
    "ExternalOrderResponse", "OrderCreate", "OrderResponse", "PaymentVerify", "PaymentVerifyResponse", "WebhookResponse",
]
