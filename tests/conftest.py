"""Shared test fixtures."""

import asyncio
from datetime import UTC, datetime

import pytest
from fakeredis.aioredis import FakeRedis

from src.bridge.events import EventDispatcher
from src.errors import IntercomError
from src.intercom.client import IntercomClient
from src.models import Attachment, Message, Platform, Sender
from src.storage.connection import set_redis
from src.storage.mappings import MappingStore
from src.storage.queue import PendingQueue


@pytest.fixture(autouse=True)
def _reset_singletons():
    EventDispatcher._reset()
    MappingStore._reset()
    PendingQueue._reset()
    IntercomClient._reset()
    yield
    EventDispatcher._reset()
    MappingStore._reset()
    PendingQueue._reset()
    IntercomClient._reset()


@pytest.fixture
async def redis_client():
    """FakeRedis installed as the shared client, emptied around each test."""
    client = FakeRedis(decode_responses=True)
    await client.flushall()
    set_redis(client)
    yield client
    await client.flushall()
    set_redis(None)
    await client.aclose()


def _make_message(
    message_id: str = "1",
    text: str = "hello",
    *,
    group_id: str = "-100123",
    group_name: str = "Acme Support",
    user_id: str = "42",
    name: str = "Ada Lovelace",
    username: str | None = "ada",
    attachments: list[Attachment] | None = None,
) -> Message:
    """Build a Telegram-originated message."""
    return Message(
        id=message_id,
        text=text,
        sender=Sender(id=user_id, platform=Platform.TELEGRAM, name=name, username=username),
        group_id=group_id,
        group_name=group_name,
        attachments=attachments or [],
        timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    )


@pytest.fixture
def make_message():
    """Factory for Telegram-originated messages."""
    return _make_message


class FakeIntercom:
    """In-memory stand-in for IntercomClient."""

    def __init__(self) -> None:
        self.contacts: list[tuple[str, dict]] = []
        self.conversations: list[dict] = []
        self.replies: list[tuple[str, str, str]] = []
        self.existing: dict[str, dict] = {}
        self.failing_texts: set[str] = set()
        self.create_delay = 0.0
        self.reply_delay = 0.0
        self.create_error: Exception | None = None

    async def resolve_or_create_contact(self, user_id: str, profile: dict) -> str:
        self.contacts.append((user_id, profile))
        return f"contact-{user_id}"

    async def create_conversation(self, user_id, display_name, initial_text, metadata) -> str:
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.create_error is not None:
            raise self.create_error
        conversation_id = f"conv-{len(self.conversations) + 1}"
        self.conversations.append(
            {
                "id": conversation_id,
                "user_id": user_id,
                "display_name": display_name,
                "initial_text": initial_text,
                "metadata": metadata,
            }
        )
        return conversation_id

    async def send_reply(self, conversation_id: str, text: str, user_id: str) -> None:
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)
        if any(text.endswith(failing) for failing in self.failing_texts):
            raise IntercomError("reply rejected", status=500)
        self.replies.append((conversation_id, text, user_id))

    async def find_conversation_by_group_id(self, group_id: str) -> dict | None:
        return self.existing.get(group_id)

    def replied_texts(self) -> list[str]:
        """Message texts as sent, without the Telegram sender prefix."""
        return [text.split("\n\n", 1)[1] for _, text, _ in self.replies]


@pytest.fixture
def fake_intercom() -> FakeIntercom:
    return FakeIntercom()
