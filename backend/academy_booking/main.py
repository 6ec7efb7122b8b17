"""
Academy Booking API - Main Application Entry Point

Batch seat reservations for coaching academies:
- Capacity ledger that never over-commits a batch under concurrent load
- Explicit booking state machine (approval, payment, cancellation)
- Idempotent payment confirmation for at-least-once gateway callbacks
- Background sweep of abandoned payments and finished batches
- Structured logging with request correlation and Prometheus metrics
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from academy_booking.api.exception_handlers import register_exception_handlers
from academy_booking.api.middleware import RequestLoggingMiddleware
from academy_booking.api.router import api_router
from academy_booking.core.config import get_settings
from academy_booking.core.logging import get_logger, setup_logging
from academy_booking.core.metrics import metrics_endpoint
from academy_booking.db.session import get_session_factory
from academy_booking.services.cache_service import close_redis, get_cache_stats, get_redis
from academy_booking.services.sweeper import run_sweeper

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    stop_event = asyncio.Event()
    sweeper_task = None
    if settings.SWEEPER_ENABLED:
        sweeper_task = asyncio.create_task(run_sweeper(get_session_factory(), stop_event))

    yield

    stop_event.set()
    if sweeper_task is not None:
        await sweeper_task
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Batch booking API with capacity-safe reservations and idempotent payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
