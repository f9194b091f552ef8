"""GroupLock — per-group mutual exclusion around conversation provisioning."""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

from redis.exceptions import RedisError

from src.config import settings
from src.storage.connection import get_redis

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "conversation_locks"

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

REFRESH_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class GroupLock:
    """Non-blocking Redis lock keyed by group id.

    ``acquire`` is a single ``SET NX EX`` storing a fresh owner token; the
    key expires after *ttl* seconds so a crashed holder cannot wedge a group
    forever.  ``release`` and ``refresh`` only touch the key while it still
    holds the caller's token, so a holder whose lock expired cannot delete
    or extend the next holder's lock.  When Redis is unreachable the lock
    reports "not acquired" so callers queue the message instead of risking
    a duplicate conversation.
    """

    def __init__(self, client: redis.Redis | None = None, ttl: int | None = None) -> None:
        self._client = client
        self._ttl = ttl or settings.lock_ttl_seconds

    @property
    def _redis(self) -> redis.Redis:
        return self._client or get_redis()

    @staticmethod
    def key(group_id: str) -> str:
        return f"{LOCK_PREFIX}:{group_id}"

    async def acquire(self, group_id: str) -> str | None:
        """Try to take the lock.

        Returns the owner token, or None if held elsewhere or Redis is down.
        """
        token = uuid.uuid4().hex
        try:
            result = await self._redis.set(self.key(group_id), token, nx=True, ex=self._ttl)
        except RedisError:
            logger.exception("Lock acquire failed for group=%s, treating as held", group_id)
            return None
        return token if result else None

    async def _if_owner(self, script: str, group_id: str, token: str) -> bool:
        result = await self._redis.eval(script, 1, self.key(group_id), token, self._ttl)
        return bool(result)

    async def release(self, group_id: str, token: str | None = None) -> None:
        """Delete the lock key. Never raises.

        With *token* the key is only deleted while that token still owns it;
        without one the delete is unconditional (operator override).
        """
        try:
            if token is None:
                await self._redis.delete(self.key(group_id))
                return
            released = await self._if_owner(RELEASE_SCRIPT, group_id, token)
        except RedisError:
            logger.exception(
                "Lock release failed for group=%s, key expires in %ds", group_id, self._ttl
            )
            return
        if not released:
            logger.warning("Lock for group=%s expired before release", group_id)

    async def refresh(self, group_id: str, token: str) -> bool:
        """Push the expiry out by another *ttl*. False once the lock is no longer ours."""
        try:
            refreshed = await self._if_owner(REFRESH_SCRIPT, group_id, token)
        except RedisError:
            logger.exception("Lock refresh failed for group=%s", group_id)
            return False
        if not refreshed:
            logger.warning("Lock for group=%s lost to another holder", group_id)
        return refreshed

    @contextlib.asynccontextmanager
    async def held(self, group_id: str) -> AsyncIterator[str | None]:
        """Acquire for the duration of the block; yields the token or None."""
        token = await self.acquire(group_id)
        try:
            yield token
        finally:
            if token is not None:
                await self.release(group_id, token)
