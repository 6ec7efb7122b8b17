"""
Gateway webhook receiver. Authenticated by the delivery signature, not a bearer token.
"""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.api.deps import get_gateway, get_notifier
from academy_booking.db.session import get_db
from academy_booking.schemas.payment import WebhookResponse
from academy_booking.services import payment_service
from academy_booking.services.interfaces import Notifier, PaymentGateway

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/razorpay", response_model=WebhookResponse)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header("", alias="X-Razorpay-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
):
    # The signature covers the exact bytes received
    body = await request.body()
    return await payment_service.handle_webhook(
        db,
        body=body,
        signature=x_razorpay_signature,
        gateway=gateway,
        notifier=notifier,
    )
