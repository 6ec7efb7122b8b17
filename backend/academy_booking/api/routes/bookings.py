"""
Parent-facing booking endpoints: summary, reserve, list, view, cancel.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.api.deps import get_catalog, get_identity, get_notifier
from academy_booking.core.logging import bind_booking_context
from academy_booking.core.security import get_current_user_id
from academy_booking.db.session import get_db
from academy_booking.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingSummaryRequest,
    BookingSummaryResponse,
)
from academy_booking.services import cancellation_service, query_service, reservation_service
from academy_booking.services.interfaces import CatalogProvider, IdentityProvider, Notifier

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Reserve one seat per participant in a batch.

    Returns 409 with the remaining free seats when the batch cannot take
    all participants; nothing is held in that case.
    """
    bind_booking_context(batch_id=booking_data.batch_id)
    return await reservation_service.reserve(
        db,
        user_id=user_id,
        batch_id=booking_data.batch_id,
        participant_ids=booking_data.participant_ids,
        notes=booking_data.notes,
        catalog=catalog,
        notifier=notifier,
    )


@router.post("/summary", response_model=BookingSummaryResponse)
async def booking_summary(
    summary_data: BookingSummaryRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog),
):
    """Validate and price a booking without holding any seats."""
    bind_booking_context(batch_id=summary_data.batch_id)
    return await reservation_service.summarize(
        db,
        user_id=user_id,
        batch_id=summary_data.batch_id,
        participant_ids=summary_data.participant_ids,
        catalog=catalog,
    )


@router.get("", response_model=BookingListResponse)
async def list_my_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = None,
    batch_id: Optional[str] = None,
    center_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    filters = query_service.BookingFilters(
        status=status_filter,
        payment_status=payment_status,
        batch_id=batch_id,
        center_id=center_id,
        user_id=user_id,
        date_from=date_from,
        date_to=date_to,
    )
    bookings, pagination = await query_service.list_bookings(db, filters, page, limit)
    return {"bookings": bookings, "pagination": pagination}


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_my_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await query_service.get_user_booking(db, booking_id, user_id)


@router.delete("/{booking_id}", response_model=BookingResponse)
async def cancel_my_booking(
    booking_id: str,
    body: Optional[BookingCancel] = None,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity),
    notifier: Notifier = Depends(get_notifier),
):
    """Cancel a booking and release its seats back to the batch."""
    bind_booking_context(booking_id=booking_id)
    return await cancellation_service.cancel(
        db,
        booking_id=booking_id,
        actor_id=user_id,
        reason=body.reason if body else None,
        identity=identity,
        notifier=notifier,
    )
