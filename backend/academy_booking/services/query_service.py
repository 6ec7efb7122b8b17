"""
Read side: booking lookups, filtered listings and batch availability.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.core.exceptions import Forbidden, NotFound, ValidationError
from academy_booking.models.booking import Booking
from academy_booking.services import ledger_service
from academy_booking.services.cache_service import get_cached_availability, set_cached_availability
from academy_booking.services.catalog_service import SqlCatalog
from academy_booking.services.interfaces.catalog import CatalogProvider
from academy_booking.services.interfaces.identity import IdentityProvider

MAX_PAGE_SIZE = 100


@dataclass
class BookingFilters:
    status: Optional[str] = None
    payment_status: Optional[str] = None
    center_id: Optional[str] = None
    batch_id: Optional[str] = None
    user_id: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


async def get_booking(db: AsyncSession, booking_id: str) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id, Booking.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


async def get_user_booking(db: AsyncSession, booking_id: str, user_id: str) -> Booking:
    booking = await get_booking(db, booking_id)
    if booking.user_id != user_id:
        # Other users' bookings are indistinguishable from missing ones
        raise NotFound("Booking not found", booking_id=booking_id)
    return booking


async def ensure_center_access(identity: IdentityProvider, actor_id: str, center_id: Optional[str]) -> None:
    if not center_id:
        raise ValidationError("center_id is required")
    if not await identity.is_authorized_for_center(actor_id, center_id):
        raise Forbidden("Not authorized to view bookings of this center", center_id=center_id)


async def list_bookings(
    db: AsyncSession,
    filters: BookingFilters,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Booking], dict]:
    """Newest first. Returns (items, pagination)."""
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    conditions = [Booking.is_deleted.is_(False)]
    if filters.status:
        conditions.append(Booking.status == filters.status)
    if filters.payment_status:
        conditions.append(Booking.payment_status == filters.payment_status)
    if filters.center_id:
        conditions.append(Booking.center_id == filters.center_id)
    if filters.batch_id:
        conditions.append(Booking.batch_id == filters.batch_id)
    if filters.user_id:
        conditions.append(Booking.user_id == filters.user_id)
    if filters.date_from:
        conditions.append(Booking.created_at >= _start_of(filters.date_from))
    if filters.date_to:
        conditions.append(Booking.created_at < _start_of(filters.date_to + timedelta(days=1)))

    total = (await db.execute(select(func.count(Booking.id)).where(*conditions))).scalar_one()

    result = await db.execute(
        select(Booking)
        .where(*conditions)
        .order_by(Booking.created_at.desc(), Booking.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(result.scalars().all())

    total_pages = math.ceil(total / limit) if total else 0
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
    return items, pagination


async def batch_availability(
    db: AsyncSession, batch_id: str, catalog: Optional[CatalogProvider] = None
) -> dict:
    cached = await get_cached_availability(batch_id)
    if cached is not None:
        return cached

    catalog = catalog or SqlCatalog(db)
    batch = await catalog.get_batch(batch_id)
    if batch is None or batch.is_deleted:
        raise NotFound("Batch not found", batch_id=batch_id)

    committed = await ledger_service.committed_seats(db, batch_id)
    availability = {
        "batch_id": batch_id,
        "capacity": batch.capacity,
        "committed": committed,
        "free_seats": max(batch.capacity - committed, 0),
    }
    await set_cached_availability(batch_id, availability)
    return availability
