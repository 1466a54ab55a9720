"""Redis client for the Redis job queue backend.

Usage:
    from billboard_keeper.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.zadd(key, {job_id: run_at.timestamp()})
"""

from __future__ import annotations

import redis.asyncio as aioredis

from billboard_keeper.config import get_settings
from billboard_keeper.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis(url: str | None = None) -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    url = url or settings.redis_url
    _redis_client = aioredis.from_url(
        url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


def make_key(*parts: str) -> str:
    """Build a namespaced key, e.g. make_key("jobs", "expiry") -> "billboard:jobs:expiry"."""
    return get_settings().redis_key_prefix + ":".join(parts)
