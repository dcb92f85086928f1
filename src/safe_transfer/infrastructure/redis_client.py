"""Redis client and the Redis-backed sequence generator.

Deal and payment ids (ST00000001, PAY00000001) come from atomic INCR
counters, so concurrent creators never receive the same number.

Usage:
    from safe_transfer.infrastructure.redis_client import get_redis, RedisSequenceGenerator

    sequences = RedisSequenceGenerator(get_redis())
    await sequences.next_value("deal")
"""

from __future__ import annotations

import redis.asyncio as aioredis

from safe_transfer.config import get_settings
from safe_transfer.logging_config import get_logger

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


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Sequences ---


class RedisSequenceGenerator:
    """Named counters backed by ``INCR {prefix}:{name}``."""

    def __init__(self, client: aioredis.Redis, prefix: str | None = None) -> None:
        self._client = client
        self._prefix = prefix or get_settings().redis_sequence_prefix

    async def next_value(self, name: str) -> int:
        value = int(await self._client.incr(f"{self._prefix}:{name}"))
        logger.debug("sequence.next", name=name, value=value)
        return value

    async def current_value(self, name: str) -> int:
        """Last value handed out for ``name``; 0 before the first."""
        value = await self._client.get(f"{self._prefix}:{name}")
        return int(value or 0)
