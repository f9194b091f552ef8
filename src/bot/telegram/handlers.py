"""Telegram group-message handlers."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from telegram import Chat, Update
from telegram import Message as TelegramMessage
from telegram.ext import ContextTypes

from src.bridge.events import ErrorEvent, EventDispatcher, MessageEvent
from src.models import Attachment, Message, Platform, Sender

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = frozenset({Chat.GROUP, Chat.SUPERGROUP})

# (message attribute, attachment type) in detection order.
_MEDIA_KINDS = (
    ("photo", "image"),
    ("document", "file"),
    ("video", "video"),
    ("audio", "audio"),
    ("voice", "audio"),
)


def _system_text(msg: TelegramMessage) -> str | None:
    """Describe membership and title changes, or None for ordinary messages."""
    if msg.new_chat_members:
        names = ", ".join(member.first_name for member in msg.new_chat_members)
        return f"{names} joined the group"
    if msg.left_chat_member:
        return f"{msg.left_chat_member.first_name} left the group"
    if msg.new_chat_title:
        return f"Group name changed to: {msg.new_chat_title}"
    return None


def _content(msg: TelegramMessage) -> tuple[str, list[Attachment]]:
    if msg.text:
        return msg.text, []

    for attr, kind in _MEDIA_KINDS:
        media: Any = getattr(msg, attr)
        if not media:
            continue
        if attr == "photo":
            # Sizes ascend; the last one is the original.
            media = media[-1]
        return msg.caption or "", [Attachment(type=kind, url=media.file_id)]

    if msg.sticker:
        return "[Sticker]", [Attachment(type="image", url=msg.sticker.file_id)]

    system = _system_text(msg)
    if system is not None:
        return system, []

    return "[Unsupported message type]", []


def message_from_telegram(msg: TelegramMessage | None) -> Message | None:
    """Normalize a Telegram group message, or None for anything else."""
    if msg is None or msg.chat.type not in GROUP_CHAT_TYPES:
        return None

    text, attachments = _content(msg)
    user = msg.from_user
    if user is not None:
        name = " ".join(part for part in (user.first_name, user.last_name) if part)
        sender = Sender(
            id=str(user.id),
            platform=Platform.TELEGRAM,
            name=name or "Unknown User",
            username=user.username,
        )
    else:
        # Anonymous admins and channel posts carry no user.
        sender = Sender(id=str(msg.chat.id), platform=Platform.TELEGRAM, name="Unknown User")

    timestamp = msg.date or datetime.now(UTC)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)

    return Message(
        id=str(msg.message_id),
        text=text,
        sender=sender,
        group_id=str(msg.chat.id),
        group_name=msg.chat.title or "Unknown Group",
        attachments=attachments,
        timestamp=timestamp,
    )


async def handle_group_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Publish group messages to the bridge router."""
    message = message_from_telegram(update.effective_message)
    if message is None:
        return

    logger.info(
        "Group message %s in %s from %s (%d attachments)",
        message.id,
        message.group_id,
        message.sender.id,
        len(message.attachments),
    )
    await EventDispatcher.get().publish(MessageEvent(source=Platform.TELEGRAM, message=message))


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """PTB error handler: report the failure as a Telegram error event."""
    error_context: dict[str, Any] = {}
    if isinstance(update, Update) and update.effective_chat is not None:
        error_context = {
            "chat_id": update.effective_chat.id,
            "chat_type": update.effective_chat.type,
        }
    await EventDispatcher.get().publish(
        ErrorEvent(source=Platform.TELEGRAM, error=context.error, context=error_context)
    )
