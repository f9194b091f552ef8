"""Webhook handlers — importing this package registers them."""

from src.webhooks.handlers import intercom  # noqa: F401
