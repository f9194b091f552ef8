"""Tests for the webhook source registry and the Intercom handler."""

import copy
from unittest.mock import AsyncMock

from src.bridge.events import EventDispatcher, EventKind, MessageEvent
from src.intercom.webhook import SIGNATURE_HEADER, signature_valid
from src.models import Platform
from src.webhooks.registry import WebhookRegistry, webhook_registry


def _always(body: bytes, header: str) -> bool:
    return True


# -- Registration ------------------------------------------------------------


def test_register_handler() -> None:
    reg = WebhookRegistry()

    @reg.handler("intercom", signature_header="X-Hub-Signature", verify=_always)
    async def handle_intercom(payload: dict) -> None:
        pass

    entry = reg.get("intercom")
    assert entry is not None
    assert entry.name == "intercom"
    assert entry.handler is handle_intercom
    assert entry.signature_header == "X-Hub-Signature"
    assert entry.verify is _always


def test_unknown_source_returns_none() -> None:
    reg = WebhookRegistry()
    assert reg.get("nope") is None


def test_reregistering_replaces_handler() -> None:
    reg = WebhookRegistry()

    @reg.handler("a", signature_header="X-Sig", verify=_always)
    async def first(payload: dict) -> None:
        pass

    @reg.handler("a", signature_header="X-Sig", verify=_always)
    async def second(payload: dict) -> None:
        pass

    entry = reg.get("a")
    assert entry is not None
    assert entry.handler is second
    assert reg.sources == ["a"]


def test_sources_empty_initially() -> None:
    reg = WebhookRegistry()
    assert reg.sources == []


# -- Intercom handler ---------------------------------------------------------


def _admin_reply() -> dict:
    return {
        "type": "notification_event",
        "data": {
            "item": {
                "type": "conversation",
                "id": "conv-1",
                "custom_attributes": {"telegram_group_id": "-100"},
                "conversation_parts": {
                    "conversation_parts": [
                        {
                            "id": "p1",
                            "part_type": "comment",
                            "body": "hi",
                            "author": {"type": "admin", "id": "a1", "name": "Grace"},
                        }
                    ]
                },
            }
        },
    }


def test_intercom_source_registered_with_hub_signature() -> None:
    import src.webhooks.handlers  # noqa: F401

    entry = webhook_registry.get("intercom")
    assert entry is not None
    assert entry.signature_header == SIGNATURE_HEADER
    assert entry.verify is signature_valid


async def test_intercom_handler_publishes_message_event() -> None:
    from src.webhooks.handlers.intercom import handle_intercom

    received = AsyncMock()
    EventDispatcher.get().subscribe(EventKind.MESSAGE, Platform.INTERCOM, received)

    await handle_intercom(_admin_reply())

    received.assert_awaited_once()
    event = received.await_args.args[0]
    assert isinstance(event, MessageEvent)
    assert event.message.conversation_id == "conv-1"
    assert event.message.group_id == "-100"


async def test_intercom_handler_ignores_unbridged_conversations() -> None:
    from src.webhooks.handlers.intercom import handle_intercom

    received = AsyncMock()
    EventDispatcher.get().subscribe(EventKind.MESSAGE, Platform.INTERCOM, received)

    payload = copy.deepcopy(_admin_reply())
    payload["data"]["item"]["custom_attributes"] = {}
    await handle_intercom(payload)

    received.assert_not_awaited()
