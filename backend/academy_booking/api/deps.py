"""
FastAPI dependencies for the booking collaborators.
Tests replace these through app.dependency_overrides.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from academy_booking.db.session import get_db
from academy_booking.infrastructure.razorpay_gateway import get_payment_gateway
from academy_booking.services.catalog_service import SqlCatalog, SqlIdentity
from academy_booking.services.interfaces import (
    CatalogProvider,
    IdentityProvider,
    LogNotifier,
    Notifier,
    PaymentGateway,
)

_notifier = LogNotifier()


def get_catalog(db: AsyncSession = Depends(get_db)) -> CatalogProvider:
    return SqlCatalog(db)


def get_identity(db: AsyncSession = Depends(get_db)) -> IdentityProvider:
    return SqlIdentity(db)


def get_gateway() -> PaymentGateway:
    return get_payment_gateway()


def get_notifier() -> Notifier:
    return _notifier
