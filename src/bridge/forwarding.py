"""ConversationForwarder — delivers Telegram messages into a bound conversation."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.bridge.formatting import format_for_intercom
from src.errors import IntercomError, StoreError

if TYPE_CHECKING:
    from src.intercom.client import IntercomClient
    from src.models import Message
    from src.storage.mappings import MappingStore

logger = logging.getLogger(__name__)


class ConversationForwarder:
    """The single forwarding path shared by the router and the provisioner."""

    def __init__(self, intercom: IntercomClient, mappings: MappingStore) -> None:
        self._intercom = intercom
        self._mappings = mappings

    async def resolve_contact(self, message: Message) -> str:
        """Intercom contact id for the message sender, cached for a day.

        A store outage degrades to an uncached lookup; Intercom failures
        propagate as ``IntercomError``.
        """
        user_id = message.sender.id
        try:
            cached = await self._mappings.get_contact(user_id)
        except StoreError:
            logger.warning("Contact cache unavailable for user=%s", user_id, exc_info=True)
            cached = None
        if cached:
            return cached

        contact_id = await self._intercom.resolve_or_create_contact(
            user_id,
            {
                "name": message.sender.name,
                "username": message.sender.username,
                "group_id": message.group_id,
                "group_name": message.group_name,
            },
        )
        try:
            await self._mappings.save_contact(user_id, contact_id)
        except StoreError:
            logger.warning("Could not cache contact for user=%s", user_id, exc_info=True)
        return contact_id

    async def forward(self, message: Message, conversation_id: str) -> None:
        """Send *message* into *conversation_id* and record it as the last forwarded."""
        contact_id = await self.resolve_contact(message)
        try:
            await self._intercom.send_reply(
                conversation_id, format_for_intercom(message), contact_id
            )
        except IntercomError as exc:
            if exc.is_not_found:
                # The cached contact may have been deleted on the Intercom side.
                await self._invalidate_contact(message.sender.id)
            raise

        try:
            await self._mappings.update_last_message_id(message.group_id, message.id)
        except StoreError:
            logger.warning(
                "Delivered message %s but could not record it on group=%s",
                message.id,
                message.group_id,
                exc_info=True,
            )
        logger.info(
            "Forwarded message %s from group=%s to conversation=%s",
            message.id,
            message.group_id,
            conversation_id,
        )

    async def _invalidate_contact(self, user_id: str) -> None:
        try:
            await self._mappings.invalidate_contact(user_id)
        except StoreError:
            logger.warning("Could not invalidate contact for user=%s", user_id, exc_info=True)
