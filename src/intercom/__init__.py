"""Intercom side of the bridge: REST client and webhook parsing."""

from src.intercom.client import IntercomClient
from src.intercom.webhook import parse_notification

__all__ = [
    "IntercomClient",
    "parse_notification",
]
