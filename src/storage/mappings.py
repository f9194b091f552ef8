"""MappingStore — group ↔ conversation bindings and the contact cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.config import settings
from src.models import GroupBinding
from src.storage.connection import get_redis, store_errors

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

MAPPING_PREFIX = "group_mappings"
REVERSE_PREFIX = "conversation_groups"
CONTACT_PREFIX = "contact_mappings"


def _mapping_key(group_id: str) -> str:
    return f"{MAPPING_PREFIX}:{group_id}"


def _reverse_key(conversation_id: str) -> str:
    return f"{REVERSE_PREFIX}:{conversation_id}"


def _contact_key(user_id: str) -> str:
    return f"{CONTACT_PREFIX}:{user_id}"


class MappingStore:
    """Persists group bindings and cached contact ids in Redis.

    Bindings live in one hash per group (``group_mappings:<group_id>``) with
    no expiry.  A reverse index ``conversation_groups:<conversation_id>`` is
    written in the same transaction, so ``get_group_id`` is a single GET.
    Bindings written without the index are still found by a key scan.

    Singleton accessed via ``MappingStore.get()``.  Pass an explicit *client*
    for test isolation.
    """

    _instance: MappingStore | None = None

    def __init__(self, client: redis.Redis | None = None, contact_ttl: int | None = None) -> None:
        self._client = client
        self._contact_ttl = contact_ttl or settings.contact_ttl_seconds

    @classmethod
    def get(cls) -> MappingStore:
        """Return the shared MappingStore instance."""
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

    # -- Bindings --------------------------------------------------------------

    async def save_binding(self, binding: GroupBinding) -> None:
        """Upsert the binding for its group and keep the reverse index in step."""
        key = _mapping_key(binding.group_id)
        with store_errors("save_binding"):
            previous = await self._redis.hget(key, "conversation_id")
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=binding.to_hash())
                pipe.set(_reverse_key(binding.conversation_id), binding.group_id)
                if previous and previous != binding.conversation_id:
                    pipe.delete(_reverse_key(previous))
                await pipe.execute()
        logger.info(
            "Saved binding: group=%s conversation=%s",
            binding.group_id,
            binding.conversation_id,
        )

    async def get_binding(self, group_id: str) -> GroupBinding | None:
        with store_errors("get_binding"):
            data = await self._redis.hgetall(_mapping_key(group_id))
        if not data or not data.get("conversation_id"):
            return None
        return GroupBinding.from_hash({"group_id": group_id, **data})

    async def get_conversation_id(self, group_id: str) -> str | None:
        binding = await self.get_binding(group_id)
        return binding.conversation_id if binding else None

    async def get_group_id(self, conversation_id: str) -> str | None:
        """Reverse lookup: which group is bound to *conversation_id*."""
        with store_errors("get_group_id"):
            group_id = await self._redis.get(_reverse_key(conversation_id))
            if group_id:
                return group_id

            # Bindings saved before the reverse index existed.
            async for key in self._redis.scan_iter(match=f"{MAPPING_PREFIX}:*"):
                if await self._redis.hget(key, "conversation_id") != conversation_id:
                    continue
                group_id = key.split(":", 1)[1]
                await self._redis.set(_reverse_key(conversation_id), group_id)
                logger.info(
                    "Back-filled reverse index: conversation=%s group=%s",
                    conversation_id,
                    group_id,
                )
                return group_id
        return None

    async def update_last_message_id(self, group_id: str, message_id: str) -> bool:
        """Record the last forwarded message. Returns False if the group is unbound."""
        key = _mapping_key(group_id)
        with store_errors("update_last_message_id"):
            if not await self._redis.exists(key):
                return False
            await self._redis.hset(key, "last_message_id", message_id)
        return True

    # -- Contact cache ---------------------------------------------------------

    async def get_contact(self, user_id: str) -> str | None:
        with store_errors("get_contact"):
            contact_id = await self._redis.get(_contact_key(user_id))
        if contact_id:
            logger.debug("Contact cache hit: user=%s contact=%s", user_id, contact_id)
        return contact_id

    async def save_contact(self, user_id: str, contact_id: str) -> None:
        with store_errors("save_contact"):
            await self._redis.set(_contact_key(user_id), contact_id, ex=self._contact_ttl)
        logger.debug("Cached contact: user=%s contact=%s", user_id, contact_id)

    async def invalidate_contact(self, user_id: str) -> None:
        with store_errors("invalidate_contact"):
            await self._redis.delete(_contact_key(user_id))
        logger.info("Invalidated contact cache: user=%s", user_id)
