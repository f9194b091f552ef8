"""Outbound delivery to Telegram groups via the Bot API."""

from __future__ import annotations

import logging

import telegram
from telegram import ReplyParameters
from telegram.constants import ParseMode
from telegram.error import TelegramError

from src.errors import TelegramSendError

logger = logging.getLogger(__name__)


class TelegramSender:
    """Sends bridge messages into Telegram group chats.

    Unlike a best-effort notifier, failures raise ``TelegramSendError`` so the
    router can decide what to do with the message.
    """

    def __init__(self, bot: telegram.Bot) -> None:
        self._bot = bot

    async def send(self, group_id: str, text: str, reply_to_id: str | None = None) -> None:
        """Send an HTML-formatted text message to a group."""
        reply_parameters = ReplyParameters(message_id=int(reply_to_id)) if reply_to_id else None
        try:
            result = await self._bot.send_message(
                chat_id=int(group_id),
                text=text,
                parse_mode=ParseMode.HTML,
                reply_parameters=reply_parameters,
            )
        except TelegramError as exc:
            msg = f"Telegram send to {group_id} failed: {exc}"
            raise TelegramSendError(msg) from exc
        logger.info("Message %s sent to group=%s", result.message_id, group_id)

    async def send_attachment(self, group_id: str, url: str, caption: str | None = None) -> None:
        """Send a file (by URL or Telegram file id) as a document."""
        try:
            result = await self._bot.send_document(
                chat_id=int(group_id), document=url, caption=caption
            )
        except TelegramError as exc:
            msg = f"Telegram document send to {group_id} failed: {exc}"
            raise TelegramSendError(msg) from exc
        logger.info("Document %s sent to group=%s", result.message_id, group_id)
