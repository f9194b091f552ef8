"""PendingQueue — per-group FIFO buffer for messages awaiting delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, NamedTuple

from src.config import settings
from src.models import Message
from src.storage.connection import get_redis, store_errors

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

QUEUE_PREFIX = "message_queues"
DEAD_LETTER_PREFIX = "dead_letters"


def _queue_key(group_id: str) -> str:
    return f"{QUEUE_PREFIX}:{group_id}"


def _dead_letter_key(group_id: str) -> str:
    return f"{DEAD_LETTER_PREFIX}:{group_id}"


class PendingEntry(NamedTuple):
    """A buffered message together with the exact list entry it was read from."""

    raw: str
    message: Message


def _decode(raw: list[str], key: str) -> tuple[list[PendingEntry], list[str]]:
    """Split raw entries into decoded messages and the entries that failed."""
    entries: list[PendingEntry] = []
    bad: list[str] = []
    for entry in raw:
        try:
            entries.append(PendingEntry(entry, Message.from_json(entry)))
        except (ValueError, KeyError, TypeError):
            logger.exception("Undecodable entry in %s", key)
            bad.append(entry)
    return entries, bad


class PendingQueue:
    """Redis list per group, appended at the tail and read head-first.

    Reads are non-destructive: ``snapshot`` returns the current entries and
    the caller removes exactly the ones it processed with ``commit`` (or
    everything with ``clear``) once each has been delivered or re-queued.
    Removal is by entry value, so concurrent readers and late arrivals never
    lose entries they have not handled.
    """

    _instance: PendingQueue | None = None

    def __init__(self, client: redis.Redis | None = None, max_attempts: int | None = None) -> None:
        self._client = client
        self._max_attempts = max_attempts or settings.max_delivery_attempts

    @classmethod
    def get(cls) -> PendingQueue:
        """Return the shared PendingQueue instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def _redis(self) -> redis.Redis:
        return self._client or get_redis()

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def enqueue(self, group_id: str, message: Message) -> int:
        """Append *message* to the group's buffer. Returns the new length."""
        with store_errors("enqueue"):
            length = await self._redis.rpush(_queue_key(group_id), message.to_json())
        logger.info(
            "Message queued: group=%s message=%s attempts=%d queue_length=%d",
            group_id,
            message.id,
            message.attempts,
            length,
        )
        return length

    async def snapshot(self, group_id: str) -> list[PendingEntry]:
        """Return every buffered entry in arrival order without removing it."""
        key = _queue_key(group_id)
        with store_errors("snapshot"):
            raw = await self._redis.lrange(key, 0, -1)
            entries, bad = _decode(raw, key)
            for entry in bad:
                await self._redis.lrem(key, 1, entry)
        return entries

    async def drain(self, group_id: str) -> list[Message]:
        """Return every buffered message in arrival order without removing them."""
        return [entry.message for entry in await self.snapshot(group_id)]

    async def commit(self, group_id: str, entries: list[PendingEntry]) -> None:
        """Remove exactly *entries*, leaving anything read or appended by others."""
        if not entries:
            return
        key = _queue_key(group_id)
        with store_errors("commit"):
            async with self._redis.pipeline(transaction=True) as pipe:
                for entry in entries:
                    pipe.lrem(key, 1, entry.raw)
                await pipe.execute()

    async def clear(self, group_id: str) -> None:
        with store_errors("clear"):
            await self._redis.delete(_queue_key(group_id))
        logger.info("Message queue cleared: group=%s", group_id)

    async def length(self, group_id: str) -> int:
        with store_errors("length"):
            return await self._redis.llen(_queue_key(group_id))

    async def requeue(self, group_id: str, message: Message) -> bool:
        """Re-buffer a message whose delivery failed.

        Returns False when the message has hit the attempt ceiling and was
        moved to the dead-letter list instead.
        """
        message.attempts += 1
        if message.attempts >= self._max_attempts:
            await self.dead_letter(group_id, message)
            return False
        await self.enqueue(group_id, message)
        return True

    # -- Dead letters ----------------------------------------------------------

    async def dead_letter(self, group_id: str, message: Message) -> None:
        with store_errors("dead_letter"):
            await self._redis.rpush(_dead_letter_key(group_id), message.to_json())
        logger.error(
            "Message dead-lettered after %d attempts: group=%s message=%s",
            message.attempts,
            group_id,
            message.id,
        )

    async def dead_letters(self, group_id: str) -> list[Message]:
        key = _dead_letter_key(group_id)
        with store_errors("dead_letters"):
            raw = await self._redis.lrange(key, 0, -1)
        entries, _ = _decode(raw, key)
        return [entry.message for entry in entries]

    async def dead_letter_length(self, group_id: str) -> int:
        with store_errors("dead_letter_length"):
            return await self._redis.llen(_dead_letter_key(group_id))

    async def groups_with_pending(self) -> list[str]:
        """Group ids that currently have buffered or dead-lettered messages."""
        groups: set[str] = set()
        with store_errors("groups_with_pending"):
            for prefix in (QUEUE_PREFIX, DEAD_LETTER_PREFIX):
                async for key in self._redis.scan_iter(match=f"{prefix}:*"):
                    groups.add(key.split(":", 1)[1])
        return sorted(groups)
