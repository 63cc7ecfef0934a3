"""Redis client for idempotency keys on the REST create endpoint.

Usage:
    from wap3_escrow.infrastructure.redis_client import init_redis, claim_idempotency

    await init_redis()
    if not await claim_idempotency("create:abc"):
        raise DuplicateOperationError("create:abc")
"""

from __future__ import annotations

import redis.asyncio as aioredis

from wap3_escrow.config import get_settings
from wap3_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def set_redis(client: aioredis.Redis | None) -> None:
    """Install a client directly (tests)."""
    global _redis_client
    _redis_client = client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def claim_idempotency(key: str, value: str = "1") -> bool:
    """Atomically claim an idempotency key.

    Returns True if this call claimed the key, False if it was already used.
    """
    settings = get_settings()
    redis = get_redis()
    claimed = await redis.set(
        f"idempotency:{key}",
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency(key: str) -> None:
    """Forget a claimed key after the guarded operation was rejected outright."""
    await get_redis().delete(f"idempotency:{key}")
