"""Shared Redis connection.

One ``redis.asyncio`` client is created lazily from ``REDIS_URL`` and shared
by the mapping store, lock and queue.  Tests swap in a FakeRedis instance
with ``set_redis()``.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Iterator

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.config import settings
from src.errors import StoreError

logger = logging.getLogger(__name__)

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Return (and lazily create) the shared Redis client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = redis.from_url(settings.redis_url, decode_responses=True)
        logger.info("Redis client created for %s", settings.redis_url)
    return _client


def set_redis(client: redis.Redis | None) -> None:
    """Replace the shared client (``None`` forces re-creation on next use)."""
    global _client  # noqa: PLW0603
    _client = client


async def close_redis() -> None:
    """Close the shared client if one was created."""
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis client closed")


@contextlib.contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Re-raise Redis failures inside the block as StoreError."""
    try:
        yield
    except RedisError as exc:
        msg = f"Redis {operation} failed: {exc}"
        raise StoreError(msg) from exc
