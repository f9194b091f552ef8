"""Exception types raised by the bridge."""

from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for all bridge errors."""


class MessageValidationError(BridgeError):
    """A message lacks the fields needed to route it."""


class StoreError(BridgeError):
    """The Redis backing store could not be reached or rejected a command."""


class RemoteCallError(BridgeError):
    """A call to Telegram or Intercom failed."""


class IntercomError(RemoteCallError):
    """Intercom API request failed.

    ``status`` is the HTTP status code, or ``None`` when the request never
    produced a response (timeout, connection refused).
    """

    def __init__(self, message: str, *, status: int | None = None, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def is_conflict(self) -> bool:
        return self.status == 409

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class TelegramSendError(RemoteCallError):
    """Telegram Bot API rejected or failed a send."""
