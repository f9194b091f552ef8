"""Typed events passed from the platform adapters to the router."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from src.models import Message, Platform

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    MESSAGE = "message"
    ERROR = "error"


@dataclass(frozen=True)
class MessageEvent:
    source: Platform
    message: Message

    @property
    def kind(self) -> EventKind:
        return EventKind.MESSAGE


@dataclass(frozen=True)
class ErrorEvent:
    source: Platform
    error: BaseException
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> EventKind:
        return EventKind.ERROR


Event = MessageEvent | ErrorEvent
EventHandler = Callable[[Any], Awaitable[Any]]


class EventDispatcher:
    """Delivers adapter events to the handler subscribed for (kind, source).

    One handler per pair; adapters never see handler exceptions.

    Singleton accessed via ``EventDispatcher.get()``.
    """

    _instance: EventDispatcher | None = None

    def __init__(self) -> None:
        self._handlers: dict[tuple[EventKind, Platform], EventHandler] = {}

    @classmethod
    def get(cls) -> EventDispatcher:
        """Return the singleton instance, creating it if needed."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset singleton — for tests only."""
        cls._instance = None

    def subscribe(self, kind: EventKind, source: Platform, handler: EventHandler) -> None:
        """Register *handler*. Raises ValueError if the pair already has one."""
        if (kind, source) in self._handlers:
            msg = f"Handler for {kind}/{source} is already registered"
            raise ValueError(msg)
        self._handlers[(kind, source)] = handler

    async def publish(self, event: Event) -> bool:
        """Run the matching handler. Returns False if none ran or it raised."""
        handler = self._handlers.get((event.kind, event.source))
        if handler is None:
            logger.warning("No handler for %s event from %s", event.kind, event.source)
            return False
        try:
            await handler(event)
        except Exception:
            logger.exception("Handler for %s event from %s failed", event.kind, event.source)
            return False
        return True
