"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter

from academy_booking.api.routes import academy, batches, bookings, payments, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(webhooks.router)
api_router.include_router(academy.router)
api_router.include_router(batches.router)
