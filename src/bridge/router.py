"""BridgeRouter — routes messages between Telegram groups and Intercom conversations."""

from __future__ import annotations

import logging
from collections import Counter
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from src.bridge.events import ErrorEvent, EventKind, MessageEvent
from src.bridge.formatting import format_for_telegram
from src.errors import MessageValidationError, RemoteCallError, StoreError
from src.models import Platform

if TYPE_CHECKING:
    from src.bridge.events import EventDispatcher
    from src.bridge.forwarding import ConversationForwarder
    from src.bridge.provisioner import ConversationProvisioner
    from src.models import Message
    from src.storage.mappings import MappingStore
    from src.storage.queue import PendingQueue

logger = logging.getLogger(__name__)


@runtime_checkable
class GroupSender(Protocol):
    """Outbound side of the Telegram adapter."""

    async def send(self, group_id: str, text: str, reply_to_id: str | None = None) -> None: ...

    async def send_attachment(
        self, group_id: str, url: str, caption: str | None = None
    ) -> None: ...


class RouteOutcome(StrEnum):
    FORWARDED = "forwarded"
    PROVISIONED = "provisioned"
    QUEUED = "queued"
    DEAD_LETTERED = "dead_lettered"
    DROPPED = "dropped"
    INVALID = "invalid"
    FAILED = "failed"


class BridgeRouter:
    """Top-level coordinator for both inbound directions.

    Every call resolves to a forward, a buffered retry, or a logged drop;
    nothing raises back into the platform adapters.  ``stats`` counts
    outcomes so dropped replies and dead letters stay visible.
    """

    def __init__(
        self,
        *,
        mappings: MappingStore,
        queue: PendingQueue,
        forwarder: ConversationForwarder,
        provisioner: ConversationProvisioner,
        telegram: GroupSender,
    ) -> None:
        self._mappings = mappings
        self._queue = queue
        self._forwarder = forwarder
        self._provisioner = provisioner
        self._telegram = telegram
        self.stats: Counter[RouteOutcome] = Counter()

    def attach(self, dispatcher: EventDispatcher) -> None:
        """Subscribe the router's handlers for both platforms."""
        dispatcher.subscribe(EventKind.MESSAGE, Platform.TELEGRAM, self._on_telegram_event)
        dispatcher.subscribe(EventKind.MESSAGE, Platform.INTERCOM, self._on_intercom_event)
        dispatcher.subscribe(EventKind.ERROR, Platform.TELEGRAM, self.handle_error)
        dispatcher.subscribe(EventKind.ERROR, Platform.INTERCOM, self.handle_error)

    async def _on_telegram_event(self, event: MessageEvent) -> None:
        await self.handle_telegram_message(event.message)

    async def _on_intercom_event(self, event: MessageEvent) -> None:
        await self.handle_intercom_message(event.message)

    async def handle_error(self, event: ErrorEvent) -> None:
        logger.error(
            "%s adapter error: %r (context=%s)",
            event.source,
            event.error,
            event.context,
            exc_info=event.error,
        )

    def _record(self, outcome: RouteOutcome) -> RouteOutcome:
        self.stats[outcome] += 1
        return outcome

    # -- Telegram → Intercom ---------------------------------------------------

    async def handle_telegram_message(self, message: Message) -> RouteOutcome:
        """Forward a group message, provisioning the conversation on first contact."""
        try:
            message.validate_routable()
        except MessageValidationError as exc:
            logger.error("Dropping unroutable Telegram message: %s", exc)
            return self._record(RouteOutcome.INVALID)

        logger.info(
            "Processing Telegram message %s from group=%s (%s)",
            message.id,
            message.group_id,
            message.group_name,
        )
        try:
            return self._record(await self._route_telegram(message))
        except Exception:
            logger.exception("Error handling Telegram message %s", message.id)
            return self._record(await self._requeue(message))

    async def _route_telegram(self, message: Message) -> RouteOutcome:
        group_id = message.group_id
        try:
            conversation_id = await self._mappings.get_conversation_id(group_id)
        except StoreError:
            logger.exception("Binding lookup failed for group=%s, treating as unbound", group_id)
            conversation_id = None

        if conversation_id is None:
            try:
                conversation_id = await self._provisioner.provision(message)
            except StoreError:
                logger.exception(
                    "Could not buffer message %s for group=%s; it is lost", message.id, group_id
                )
                return RouteOutcome.FAILED
            if conversation_id is None:
                logger.error("Failed to create or find conversation for group=%s", group_id)
                return RouteOutcome.QUEUED
            return RouteOutcome.PROVISIONED

        if await self._queue.length(group_id):
            # Keep arrival order behind the existing backlog.
            await self._queue.enqueue(group_id, message)
            await self._provisioner.replay(group_id, conversation_id)
            return RouteOutcome.QUEUED

        try:
            await self._forwarder.forward(message, conversation_id)
        except RemoteCallError:
            logger.exception(
                "Error sending message %s to conversation %s, queuing for retry",
                message.id,
                conversation_id,
            )
            return await self._requeue(message)
        return RouteOutcome.FORWARDED

    async def _requeue(self, message: Message) -> RouteOutcome:
        try:
            if await self._queue.requeue(message.group_id, message):
                return RouteOutcome.QUEUED
            return RouteOutcome.DEAD_LETTERED
        except StoreError:
            logger.exception("Could not queue message %s; it is lost", message.id)
            return RouteOutcome.FAILED

    # -- Intercom → Telegram ---------------------------------------------------

    async def handle_intercom_message(self, message: Message) -> RouteOutcome:
        """Deliver an admin reply and its attachments to the bound group."""
        conversation_id = message.conversation_id
        if not conversation_id:
            logger.warning("Intercom message %s has no conversation id, dropping", message.id)
            return self._record(RouteOutcome.DROPPED)

        logger.info("Processing Intercom message %s on conversation=%s", message.id, conversation_id)
        try:
            group_id = await self._mappings.get_group_id(conversation_id)
        except StoreError:
            logger.exception("Reverse lookup failed for conversation=%s", conversation_id)
            return self._record(RouteOutcome.FAILED)

        if group_id is None:
            logger.warning(
                "No Telegram group bound to Intercom conversation=%s, dropping reply %s",
                conversation_id,
                message.id,
            )
            return self._record(RouteOutcome.DROPPED)

        if message.group_id and message.group_id != group_id:
            logger.warning(
                "Conversation %s is tagged with group=%s but bound to group=%s; using binding",
                conversation_id,
                message.group_id,
                group_id,
            )

        outcome = RouteOutcome.FORWARDED
        try:
            await self._telegram.send(group_id, format_for_telegram(message))
        except Exception:
            logger.exception("Error sending Intercom reply %s to group=%s", message.id, group_id)
            outcome = RouteOutcome.FAILED

        for attachment in message.attachments:
            try:
                await self._telegram.send_attachment(group_id, attachment.url, attachment.name)
            except Exception:
                logger.exception(
                    "Error sending attachment %s to group=%s", attachment.url, group_id
                )

        if outcome is RouteOutcome.FORWARDED:
            logger.info("Intercom reply %s forwarded to group=%s", message.id, group_id)
        return self._record(outcome)
