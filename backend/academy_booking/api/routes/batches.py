"""
Batch availability endpoint (cached).
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.api.deps import get_catalog
from academy_booking.db.session import get_db
from academy_booking.schemas.booking import BatchAvailabilityResponse
from academy_booking.services import query_service
from academy_booking.services.cache_service import get_cached_availability
from academy_booking.services.interfaces import CatalogProvider

router = APIRouter(prefix="/batches", tags=["Batches"])


@router.get("/{batch_id}/availability", response_model=BatchAvailabilityResponse)
async def get_batch_availability(
    batch_id: str,
    db: AsyncSession = Depends(get_db),
    catalog: CatalogProvider = Depends(get_catalog),
):
    """Free seats in a batch. A snapshot for display; reservations re-check under the ledger."""
    cached = await get_cached_availability(batch_id)
    if cached is not None:
        return {**cached, "cached": True}
    return await query_service.batch_availability(db, batch_id, catalog=catalog)
