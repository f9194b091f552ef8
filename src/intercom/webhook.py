"""Translate Intercom webhook notifications into bridge messages.

Intercom signs every notification with ``X-Hub-Signature: sha1=<hex>``,
an HMAC-SHA1 of the raw body keyed with the app's client secret.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import UTC, datetime
from typing import Any

from src.config import settings
from src.intercom.client import GROUP_ID_ATTRIBUTE, GROUP_NAME_ATTRIBUTE
from src.models import Attachment, Message, Platform, Sender

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature"

# Conversation sources that never carry a human admin reply.
SKIPPED_SOURCES = frozenset({"automated", "operator"})


def signature_valid(body: bytes, header: str) -> bool:
    """Check an ``sha1=<hex>`` signature header against the client secret."""
    secret = settings.intercom_client_secret
    if not secret or not header.startswith("sha1="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return hmac.compare_digest(expected, header.removeprefix("sha1="))


def _latest_part(item: dict[str, Any]) -> dict[str, Any] | None:
    parts = (item.get("conversation_parts") or {}).get("conversation_parts") or []
    return parts[0] if parts else None


def parse_notification(payload: dict[str, Any]) -> Message | None:
    """Return a Message for an admin comment on a bridged conversation, else None."""
    data = payload.get("data") or {}
    item = data.get("item") or {}
    part = _latest_part(item)
    author = (part or {}).get("author") or {}
    source_type = (item.get("source") or {}).get("type")

    if (
        payload.get("type") != "notification_event"
        or item.get("type") != "conversation"
        or part is None
        or part.get("part_type") != "comment"
        or author.get("type") != "admin"
    ):
        logger.debug(
            "Skipping Intercom notification: topic=%s item=%s part=%s author=%s",
            payload.get("topic"),
            item.get("type"),
            (part or {}).get("part_type"),
            author.get("type"),
        )
        return None

    if source_type in SKIPPED_SOURCES:
        logger.info("Skipping %s message on conversation %s", source_type, item.get("id"))
        return None

    attributes = item.get("custom_attributes") or {}
    group_id = attributes.get(GROUP_ID_ATTRIBUTE)
    if not group_id:
        logger.info("No Telegram group id on conversation %s", item.get("id"))
        return None

    created_at = part.get("created_at")
    timestamp = (
        datetime.fromtimestamp(created_at, UTC) if created_at else datetime.now(UTC)
    )

    return Message(
        id=str(part.get("id", "")),
        text=part.get("body") or "",
        sender=Sender(
            id=str(author.get("id", "")),
            platform=Platform.INTERCOM,
            name=f"{author.get('name') or 'Support'} (Intercom Admin)",
        ),
        group_id=str(group_id),
        group_name=attributes.get(GROUP_NAME_ATTRIBUTE) or "Intercom Conversation",
        attachments=[
            Attachment(type=a.get("type", "file"), url=a["url"], name=a.get("name"))
            for a in part.get("attachments") or []
            if a.get("url")
        ],
        timestamp=timestamp,
        conversation_id=str(item.get("id", "")),
    )
