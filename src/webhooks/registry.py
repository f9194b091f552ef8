"""Webhook source registry.

Each source names its handler together with the header that carries the
request signature and the function that checks it, so the server can
authenticate a request before knowing anything about its payload.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Handler signature: async (payload: dict) -> None
WebhookHandler = Callable[[dict[str, Any]], Awaitable[None]]
# (raw body, signature header value) -> authentic?
SignatureVerifier = Callable[[bytes, str], bool]


@dataclass(frozen=True)
class WebhookSource:
    name: str
    handler: WebhookHandler
    signature_header: str
    verify: SignatureVerifier


class WebhookRegistry:
    """Named, signed webhook sources.

    Usage::

        @registry.handler("intercom", signature_header="X-Hub-Signature", verify=check)
        async def handle_intercom(payload: dict) -> None:
            ...
    """

    def __init__(self) -> None:
        self._sources: dict[str, WebhookSource] = {}

    def handler(
        self,
        source: str,
        *,
        signature_header: str,
        verify: SignatureVerifier,
    ) -> Callable[[WebhookHandler], WebhookHandler]:
        """Register the decorated coroutine as the handler for *source*."""

        def decorator(fn: WebhookHandler) -> WebhookHandler:
            if source in self._sources:
                logger.warning("Replacing webhook handler for source=%s", source)
            self._sources[source] = WebhookSource(source, fn, signature_header, verify)
            logger.info("Registered webhook source %s (signed via %s)", source, signature_header)
            return fn

        return decorator

    def get(self, source: str) -> WebhookSource | None:
        return self._sources.get(source)

    @property
    def sources(self) -> list[str]:
        return list(self._sources)


webhook_registry = WebhookRegistry()
