"""
Payment endpoints: external order creation and checkout callback verification.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.api.deps import get_gateway, get_notifier
from academy_booking.core.config import get_settings
from academy_booking.core.logging import bind_booking_context
from academy_booking.core.security import get_current_user_id
from academy_booking.db.session import get_db
from academy_booking.schemas.payment import OrderCreate, OrderResponse, PaymentVerify, PaymentVerifyResponse
from academy_booking.services import payment_service
from academy_booking.services.interfaces import Notifier, PaymentGateway
from academy_booking.services.interfaces.gateway import to_minor_units

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_payment_order(
    order_data: OrderCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Open a gateway order for an approved booking.
    Calling this again for the same booking returns the order already opened.
    """
    bind_booking_context(booking_id=order_data.booking_id)
    booking, order = await payment_service.create_order(
        db,
        booking_id=order_data.booking_id,
        user_id=user_id,
        gateway=gateway,
        notifier=notifier,
    )
    return {
        "booking": booking,
        "external_order": {
            "id": order.id,
            "amount": order.amount,
            "amount_minor": to_minor_units(order.amount),
            "currency": order.currency,
            "receipt": order.receipt,
            "status": order.status,
        },
        "key_id": get_settings().RAZORPAY_KEY_ID,
    }


@router.post("/verify", response_model=PaymentVerifyResponse)
async def verify_payment(
    payload: PaymentVerify,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    """Verify the checkout callback signature and confirm the booking."""
    bind_booking_context(order_id=payload.razorpay_order_id)
    booking, already_processed = await payment_service.verify_payment(
        db,
        order_id=payload.razorpay_order_id,
        payment_id=payload.razorpay_payment_id,
        signature=payload.razorpay_signature,
        gateway=gateway,
        user_id=user_id,
        notifier=notifier,
    )
    return {"booking": booking, "already_processed": already_processed}
