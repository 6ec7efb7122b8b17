"""
Redis caching for batch availability.

CACHING STRATEGY
================

What we cache:
  - Free-seat snapshots per batch, shown on batch pages and booking forms
  - Cache key pattern: "availability:{batch_id}"

Why:
  - Availability is read on every batch page view, far more often than
    seats change hands

Invalidation strategy:
  - Any ledger change (reserve, release, reconcile) deletes the batch key
    after the change is committed
  - Short TTL as safety net

What the cache is NOT used for:
  - Deciding whether a reservation fits. The ledger's conditional update
    is authoritative; a stale snapshot can only mislead a display.
"""

import json
from typing import Optional

import redis.asyncio as redis

from academy_booking.core.config import get_settings
from academy_booking.core.logging import get_logger
from academy_booking.core.metrics import record_cache_operation

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or unreachable."""
    global _redis_client
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _availability_key(batch_id: str) -> str:
    return f"availability:{batch_id}"


async def get_cached_availability(batch_id: str) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = _availability_key(batch_id)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=data is not None)
        if data:
            return json.loads(data)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_availability(batch_id: str, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    settings = get_settings()
    key = _availability_key(batch_id)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        record_cache_operation("set", hit=False)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_availability(batch_id: str) -> None:
    client = await get_redis()
    if not client:
        return

    key = _availability_key(batch_id)
    try:
        await client.delete(key)
        logger.debug("cache_invalidated", key=key)
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
