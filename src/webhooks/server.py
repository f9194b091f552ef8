"""Async HTTP server receiving Intercom webhooks.

Runs alongside the Telegram polling bot in the same asyncio event loop.
Uses aiohttp's AppRunner/TCPSite for non-blocking start/stop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from aiohttp import web

from src.config import settings
from src.webhooks.registry import WebhookSource, webhook_registry

logger = logging.getLogger(__name__)

# Strong references so in-flight handler tasks are not garbage collected.
_background_tasks: set[asyncio.Task] = set()


async def _dispatch(request: web.Request, source: str) -> web.Response:
    entry = webhook_registry.get(source)
    if entry is None:
        logger.warning("Webhook 404: no handler for source=%s", source)
        return web.json_response({"error": "unknown source"}, status=404)

    body = await request.read()
    if not entry.verify(body, request.headers.get(entry.signature_header, "")):
        logger.warning("Webhook rejected: invalid %s (source=%s)", entry.signature_header, source)
        return web.json_response({"error": "unauthorized"}, status=401)

    try:
        payload: Any = json.loads(body)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning("Webhook bad request: body is not a JSON object (source=%s)", source)
        return web.json_response({"error": "invalid JSON"}, status=400)

    logger.info(
        "Webhook received: source=%s, topic=%s, id=%s",
        source,
        payload.get("topic"),
        payload.get("id"),
    )

    # Acknowledge at once; Intercom retries endpoints that answer slowly.
    task = asyncio.create_task(_run_handler(entry, payload))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    return web.json_response({"ok": True})


async def _run_handler(entry: WebhookSource, payload: dict[str, Any]) -> None:
    try:
        await entry.handler(payload)
    except Exception:
        logger.exception("Webhook handler failed: source=%s", entry.name)


async def _handle_webhook(request: web.Request) -> web.Response:
    """POST /webhooks/<source>."""
    return await _dispatch(request, request.match_info["source"])


async def _handle_intercom_legacy(request: web.Request) -> web.Response:
    """POST /webhook/intercom, the path existing Intercom app configs point at."""
    return await _dispatch(request, "intercom")


async def _health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def _create_web_app() -> web.Application:
    """Build the aiohttp Application with routes and registered sources."""
    # Importing the handlers package registers every source.
    import src.webhooks.handlers  # noqa: F401

    app = web.Application()
    app.router.add_get("/health", _health)
    app.router.add_post("/webhooks/{source}", _handle_webhook)
    app.router.add_post("/webhook/intercom", _handle_intercom_legacy)
    return app


class WebhookServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, port: int | None = None, host: str | None = None) -> None:
        self.port = port or settings.webhook_port
        self.host = host or settings.webhook_host
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for Intercom notifications."""
        if not settings.intercom_client_secret:
            logger.warning(
                "INTERCOM_CLIENT_SECRET is empty; webhook server disabled and "
                "Intercom replies will not reach Telegram"
            )
            return

        self._runner = web.AppRunner(_create_web_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(
            "Webhook server listening on %s:%d (sources: %s)",
            self.host,
            self.port,
            ", ".join(webhook_registry.sources) or "none registered",
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Webhook server stopped")
