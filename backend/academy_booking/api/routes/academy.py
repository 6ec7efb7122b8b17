"""
Academy-facing endpoints: center booking lists and approval decisions.
The caller must be authorized for the booking's center.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.api.deps import get_identity, get_notifier
from academy_booking.core.logging import bind_booking_context
from academy_booking.core.security import get_current_user_id
from academy_booking.db.session import get_db
from academy_booking.schemas.booking import BookingCancel, BookingListResponse, BookingReject, BookingResponse
from academy_booking.services import approval_service, cancellation_service, query_service
from academy_booking.services.interfaces import IdentityProvider, Notifier

router = APIRouter(prefix="/academy/bookings", tags=["Academy"])


@router.get("", response_model=BookingListResponse)
async def list_center_bookings(
    center_id: str,
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    batch_id: Optional[str] = None,
    user_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    actor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
):
    await query_service.ensure_center_access(identity, actor_id, center_id)
    filters = query_service.BookingFilters(
        status=status_filter,
        payment_status=payment_status,
        center_id=center_id,
        batch_id=batch_id,
        user_id=user_id,
        date_from=date_from,
        date_to=date_to,
    )
    bookings, pagination = await query_service.list_bookings(db, filters, page, limit)
    return {"bookings": bookings, "pagination": pagination}


@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(
    booking_id: str,
    actor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
):
    bind_booking_context(booking_id=booking_id)
    return await approval_service.decide(
        db, booking_id=booking_id, actor_id=actor_id, approve=True, identity=identity, notifier=notifier
    )


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str,
    body: BookingReject,
    actor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
):
    """Reject a booking awaiting approval; its seats are released immediately."""
    bind_booking_context(booking_id=booking_id)
    return await approval_service.decide(
        db,
        booking_id=booking_id,
        actor_id=actor_id,
        approve=False,
        reason=body.reason,
        identity=identity,
        notifier=notifier,
    )


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_center_booking(
    booking_id: str,
    body: Optional[BookingCancel] = None,
    actor_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
):
    bind_booking_context(booking_id=booking_id)
    return await cancellation_service.cancel(
        db,
        booking_id=booking_id,
        actor_id=actor_id,
        reason=body.reason if body else None,
        identity=identity,
        notifier=notifier,
    )
