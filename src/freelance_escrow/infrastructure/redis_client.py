"""Redis client for the payment idempotency ledger.

Usage:
    from freelance_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from freelance_escrow.config import get_settings
from freelance_escrow.logging_config import get_logger

logger = get_logger(__name__)

IDEMPOTENCY_PREFIX = "idempotency:"

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize, ping and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_initialized() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def get_idempotent_result(key: str) -> str | None:
    """Return the value stored under an idempotency key, or None if unused."""
    return await get_redis().get(f"{IDEMPOTENCY_PREFIX}{key}")


async def set_idempotent_result(key: str, value: str) -> bool:
    """Store a value under an idempotency key unless one is already there.

    Returns True if this call stored the value, False if the key was taken.
    """
    settings = get_settings()
    stored = await get_redis().set(
        f"{IDEMPOTENCY_PREFIX}{key}",
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(stored)


async def clear_idempotent_result(key: str) -> None:
    """Free an idempotency key, e.g. after the movement it guarded was reversed."""
    await get_redis().delete(f"{IDEMPOTENCY_PREFIX}{key}")
