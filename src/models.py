"""Message envelope and binding data models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from src.errors import MessageValidationError


class Platform(StrEnum):
    TELEGRAM = "telegram"
    INTERCOM = "intercom"


@dataclass
class Sender:
    """Who wrote a message.

    Attributes:
        id: Platform-native user id (Telegram user id, Intercom admin id).
        platform: Platform the sender lives on.
        name: Display name.
        username: Handle without the leading ``@``, if the platform has one.
    """

    id: str
    platform: Platform
    name: str
    username: str | None = None


@dataclass
class Attachment:
    type: str
    url: str
    name: str | None = None


@dataclass
class Message:
    """Normalized unit of routing shared by both platforms.

    Attributes:
        id: Platform-native message id.
        text: Plain message text (HTML for Intercom-originated bodies).
        sender: Message author.
        group_id: Telegram chat id the message belongs to.
        group_name: Telegram chat title.
        attachments: Media references, in send order.
        timestamp: When the message was written (UTC).
        conversation_id: Intercom conversation id, set on Intercom replies.
        attempts: Failed forwarding attempts so far.
    """

    id: str
    text: str
    sender: Sender
    group_id: str
    group_name: str
    attachments: list[Attachment] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    conversation_id: str | None = None
    attempts: int = 0

    def validate_routable(self) -> None:
        """Raise MessageValidationError unless group_id and group_name are set."""
        missing = [name for name in ("group_id", "group_name") if not getattr(self, name)]
        if missing:
            msg = f"Message {self.id!r} is missing {', '.join(missing)}"
            raise MessageValidationError(msg)

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "sender": {
                "id": self.sender.id,
                "platform": str(self.sender.platform),
                "name": self.sender.name,
                "username": self.sender.username,
            },
            "group_id": self.group_id,
            "group_name": self.group_name,
            "attachments": [
                {"type": a.type, "url": a.url, "name": a.name} for a in self.attachments
            ],
            "timestamp": self.timestamp.isoformat(),
            "conversation_id": self.conversation_id,
            "attempts": self.attempts,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        sender = data["sender"]
        return cls(
            id=str(data["id"]),
            text=data.get("text", ""),
            sender=Sender(
                id=str(sender["id"]),
                platform=Platform(sender["platform"]),
                name=sender.get("name", ""),
                username=sender.get("username"),
            ),
            group_id=str(data.get("group_id") or ""),
            group_name=data.get("group_name") or "",
            attachments=[
                Attachment(type=a["type"], url=a["url"], name=a.get("name"))
                for a in data.get("attachments") or []
            ],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            conversation_id=data.get("conversation_id"),
            attempts=int(data.get("attempts", 0)),
        )

    @classmethod
    def from_json(cls, raw: str) -> Message:
        return cls.from_dict(json.loads(raw))


@dataclass
class GroupBinding:
    """Durable association of one Telegram group with one Intercom conversation."""

    group_id: str
    conversation_id: str
    last_message_id: str | None = None

    def to_hash(self) -> dict[str, str]:
        """Serialize to the flat field map stored in Redis."""
        return {
            "group_id": self.group_id,
            "conversation_id": self.conversation_id,
            "last_message_id": self.last_message_id or "",
        }

    @classmethod
    def from_hash(cls, data: dict[str, str]) -> GroupBinding:
        return cls(
            group_id=data["group_id"],
            conversation_id=data["conversation_id"],
            last_message_id=data.get("last_message_id") or None,
        )
