"""ConversationProvisioner — binds an unbound Telegram group to a new conversation.

Exactly one provisioning attempt runs per group at a time, guarded by the
Redis group lock.  Messages that arrive while another attempt holds the lock
are buffered in the pending queue and replayed into the conversation once
the binding exists.

Per-group states::

    UNBOUND ─┬─> LOCK_CONTENDED ─> BOUND (or still unbound, retried next message)
             ├─> PROVISIONING ───> BOUND
             └─> PROVISION_FAILED
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from enum import StrEnum
from typing import TYPE_CHECKING

from src.config import settings
from src.errors import MessageValidationError, StoreError
from src.models import GroupBinding, Message

if TYPE_CHECKING:
    from src.bridge.forwarding import ConversationForwarder
    from src.intercom.client import IntercomClient
    from src.storage.lock import GroupLock
    from src.storage.mappings import MappingStore
    from src.storage.queue import PendingEntry, PendingQueue

logger = logging.getLogger(__name__)


class ProvisionState(StrEnum):
    UNBOUND = "unbound"
    LOCK_CONTENDED = "lock_contended"
    PROVISIONING = "provisioning"
    BOUND = "bound"
    PROVISION_FAILED = "provision_failed"


class ConversationProvisioner:
    """Creates (or recovers) the conversation for a group's first message."""

    def __init__(
        self,
        *,
        mappings: MappingStore,
        lock: GroupLock,
        queue: PendingQueue,
        intercom: IntercomClient,
        forwarder: ConversationForwarder,
        contention_wait: float | None = None,
        recover_bindings: bool | None = None,
    ) -> None:
        self._mappings = mappings
        self._lock = lock
        self._queue = queue
        self._intercom = intercom
        self._forwarder = forwarder
        self._contention_wait = (
            settings.contention_wait_seconds if contention_wait is None else contention_wait
        )
        self._recover_bindings = (
            settings.recover_bindings if recover_bindings is None else recover_bindings
        )
        self.last_state: dict[str, ProvisionState] = {}

    def _set_state(self, group_id: str, state: ProvisionState) -> None:
        self.last_state[group_id] = state
        logger.debug("Provisioning state: group=%s state=%s", group_id, state)

    async def provision(self, message: Message) -> str | None:
        """Return the conversation id bound to the message's group, or None.

        None means the message is buffered (or unroutable) and the group is
        still unbound; the next inbound message retries.

        Raises:
            StoreError: the message could not be buffered, so nothing will
                retry it.
        """
        try:
            message.validate_routable()
        except MessageValidationError as exc:
            logger.error("Cannot provision conversation: %s", exc)
            return None

        group_id = message.group_id
        self._set_state(group_id, ProvisionState.UNBOUND)

        token = await self._lock.acquire(group_id)
        if token is None:
            return await self._await_concurrent(message)

        self._set_state(group_id, ProvisionState.PROVISIONING)
        try:
            try:
                conversation_id = await self._provision_locked(message)
            finally:
                await self._lock.release(group_id, token)
        except Exception:
            logger.exception("Provisioning failed for group=%s", group_id)
            self._set_state(group_id, ProvisionState.PROVISION_FAILED)
            await self._queue.requeue(group_id, message)
            return None

        self._set_state(group_id, ProvisionState.BOUND)
        # Messages buffered by contended callers while we held the lock.
        await self.replay(group_id, conversation_id)
        return conversation_id

    async def _await_concurrent(self, message: Message) -> str | None:
        """Another attempt holds the lock: buffer the message and give it a moment."""
        group_id = message.group_id
        self._set_state(group_id, ProvisionState.LOCK_CONTENDED)
        logger.info("Lock not acquired, queuing message %s for group=%s", message.id, group_id)

        await self._queue.enqueue(group_id, message)
        await asyncio.sleep(self._contention_wait)

        try:
            conversation_id = await self._mappings.get_conversation_id(group_id)
        except StoreError:
            logger.exception("Binding lookup failed for group=%s after contention", group_id)
            return None
        if conversation_id is None:
            logger.info("Group %s still unbound after waiting; message stays queued", group_id)
            return None

        self._set_state(group_id, ProvisionState.BOUND)
        # Our message may have been queued after the winner drained.
        await self.replay(group_id, conversation_id)
        return conversation_id

    async def _provision_locked(self, message: Message) -> str:
        group_id = message.group_id

        existing = await self._mappings.get_conversation_id(group_id)
        if existing:
            logger.info("Group %s was bound while waiting for the lock", group_id)
            await self._queue.enqueue(group_id, message)
            return existing

        if self._recover_bindings:
            recovered = await self._intercom.find_conversation_by_group_id(group_id)
            if recovered and recovered.get("id"):
                conversation_id = str(recovered["id"])
                await self._mappings.save_binding(
                    GroupBinding(group_id=group_id, conversation_id=conversation_id)
                )
                logger.info(
                    "Recovered binding from Intercom: group=%s conversation=%s",
                    group_id,
                    conversation_id,
                )
                await self._queue.enqueue(group_id, message)
                return conversation_id

        logger.info(
            "Creating Intercom conversation for group=%s (%s)", group_id, message.group_name
        )
        contact_id = await self._forwarder.resolve_contact(message)
        conversation_id = await self._intercom.create_conversation(
            contact_id,
            message.sender.username or message.sender.name,
            message.text,
            {
                "group_name": message.group_name,
                "group_id": group_id,
                "first_message_time": message.timestamp,
            },
        )
        await self._mappings.save_binding(
            GroupBinding(
                group_id=group_id,
                conversation_id=conversation_id,
                last_message_id=message.id,
            )
        )
        logger.info("Created and bound conversation %s to group=%s", conversation_id, group_id)
        return conversation_id

    # -- Replay ----------------------------------------------------------------

    async def replay(self, group_id: str, conversation_id: str) -> int:
        """Deliver the group's backlog under the group lock.

        Returns the number of messages delivered.  Returns at once when
        another holder has the lock: every holder checks the queue again
        after releasing, so entries queued in the meantime are never left
        without a replay.  Messages that fail are re-queued and wait for the
        next replay.  Never raises.
        """
        delivered = 0
        retained: Counter[str] = Counter()
        while True:
            async with self._lock.held(group_id) as token:
                if token is None:
                    logger.debug("Replay skipped for group=%s: lock held elsewhere", group_id)
                    return delivered
                try:
                    count, again = await self._replay_locked(
                        group_id, conversation_id, token, retained
                    )
                except StoreError:
                    logger.exception("Replay aborted for group=%s, backlog kept", group_id)
                    return delivered
            delivered += count
            if not again:
                return delivered

            try:
                remaining = await self._queue.length(group_id)
            except StoreError:
                logger.exception("Queue length check failed for group=%s", group_id)
                return delivered
            if remaining <= sum(retained.values()):
                return delivered
            logger.info("More messages queued for group=%s during replay", group_id)

    async def _replay_locked(
        self, group_id: str, conversation_id: str, token: str, retained: Counter[str]
    ) -> tuple[int, bool]:
        """One pass over the entries not already re-queued by this replay.

        Returns the number delivered and whether the queue should be checked
        again (False once nothing new was found or the lock was lost).
        *retained* collects the entries re-queued after a failure.
        """
        skip = retained.copy()
        fresh: list[PendingEntry] = []
        for entry in await self._queue.snapshot(group_id):
            if skip[entry.raw] > 0:
                skip[entry.raw] -= 1
            else:
                fresh.append(entry)
        if not fresh:
            return 0, False

        logger.info("Replaying %d queued messages for group=%s", len(fresh), group_id)
        delivered = 0
        for entry in fresh:
            if not await self._lock.refresh(group_id, token):
                logger.warning(
                    "Replay stopped for group=%s: lock lost with %d messages unsent",
                    group_id,
                    len(fresh) - delivered,
                )
                return delivered, False
            queued = entry.message
            try:
                await self._forwarder.forward(queued, conversation_id)
                delivered += 1
            except Exception:
                logger.exception(
                    "Queued message %s failed for group=%s, re-queuing", queued.id, group_id
                )
                if await self._queue.requeue(group_id, queued):
                    retained[queued.to_json()] += 1
            await self._queue.commit(group_id, [entry])

        logger.info(
            "Replay pass done for group=%s: delivered=%d failed=%d",
            group_id,
            delivered,
            len(fresh) - delivered,
        )
        return delivered, True
