"""Intercom webhook handler — forwards admin replies to the router."""

from __future__ import annotations

import logging
from typing import Any

from src.bridge.events import EventDispatcher, MessageEvent
from src.intercom.webhook import SIGNATURE_HEADER, parse_notification, signature_valid
from src.models import Platform
from src.webhooks.registry import webhook_registry

logger = logging.getLogger(__name__)


@webhook_registry.handler(
    "intercom", signature_header=SIGNATURE_HEADER, verify=signature_valid
)
async def handle_intercom(payload: dict[str, Any]) -> None:
    """Publish admin replies as message events; everything else is ignored."""
    message = parse_notification(payload)
    if message is None:
        return

    logger.info(
        "Intercom admin reply: conversation=%s part=%s group=%s",
        message.conversation_id,
        message.id,
        message.group_id,
    )
    await EventDispatcher.get().publish(MessageEvent(source=Platform.INTERCOM, message=message))
