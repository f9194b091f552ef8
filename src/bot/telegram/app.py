"""Telegram application factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from telegram.ext import Application, MessageHandler, filters

from src.bot.telegram.handlers import handle_error, handle_group_message
from src.bot.telegram.sender import TelegramSender
from src.bridge.events import EventDispatcher
from src.bridge.forwarding import ConversationForwarder
from src.bridge.provisioner import ConversationProvisioner
from src.bridge.router import BridgeRouter
from src.config import settings
from src.intercom.client import IntercomClient
from src.storage.connection import close_redis
from src.storage.lock import GroupLock
from src.storage.mappings import MappingStore
from src.storage.queue import PendingQueue

if TYPE_CHECKING:
    from src.webhooks.server import WebhookServer

logger = logging.getLogger(__name__)

# Module-level references so post_shutdown can access them.
_router: BridgeRouter | None = None
_webhook_server: WebhookServer | None = None


def _init_bridge(app: Application) -> BridgeRouter:
    """Wire stores, Intercom client and router, and subscribe it to adapter events."""
    mappings = MappingStore.get()
    queue = PendingQueue.get()
    intercom = IntercomClient.get()
    forwarder = ConversationForwarder(intercom, mappings)
    provisioner = ConversationProvisioner(
        mappings=mappings,
        lock=GroupLock(),
        queue=queue,
        intercom=intercom,
        forwarder=forwarder,
    )
    router = BridgeRouter(
        mappings=mappings,
        queue=queue,
        forwarder=forwarder,
        provisioner=provisioner,
        telegram=TelegramSender(app.bot),
    )
    router.attach(EventDispatcher.get())
    logger.info(
        "Bridge initialized: lock_ttl=%ds contact_ttl=%ds max_attempts=%d",
        settings.lock_ttl_seconds,
        settings.contact_ttl_seconds,
        queue.max_attempts,
    )
    return router


async def _post_init(app: Application) -> None:
    """Called after the Application is fully initialized (event loop running)."""
    global _router, _webhook_server  # noqa: PLW0603

    _router = _init_bridge(app)
    logger.info("Telegram bot ready: @%s (id=%s)", app.bot.username, app.bot.id)

    from src.webhooks.server import WebhookServer

    _webhook_server = WebhookServer()
    await _webhook_server.start()


async def _post_shutdown(app: Application) -> None:
    """Called during graceful shutdown."""
    if _webhook_server is not None:
        await _webhook_server.stop()
    await IntercomClient.get().aclose()
    await close_redis()
    if _router is not None:
        logger.info("Routing totals: %s", dict(_router.stats))


def create_app() -> Application:
    """Build and configure the Telegram application."""
    builder = Application.builder().token(settings.telegram_bot_token).concurrent_updates(True)

    proxy = settings.get_telegram_proxy()
    if proxy:
        logger.info("Using proxy for the Telegram Bot API")
        builder = builder.proxy(proxy).get_updates_proxy(proxy)

    app = builder.build()

    app.add_handler(MessageHandler(filters.ChatType.GROUPS, handle_group_message))
    app.add_error_handler(handle_error)

    app.post_init = _post_init
    app.post_shutdown = _post_shutdown

    return app
