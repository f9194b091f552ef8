"""Plain-text envelopes for messages crossing the bridge."""

from __future__ import annotations

import html
import re

from bs4 import BeautifulSoup

from src.models import Message

INTERCOM_MARKER = "<b>From Intercom</b>"

_BLANK_LINES = re.compile(r"\n{3,}")
_BLOCK_TAGS = ["p", "div", "li", "h1", "h2", "h3", "blockquote", "pre"]


def format_for_intercom(message: Message) -> str:
    """Prefix the text with the Telegram sender and list any attachments."""
    sender = message.sender.name or "Unknown User"
    if message.sender.username:
        sender += f" (@{message.sender.username})"

    formatted = f"From Telegram Group: {sender}\n\n{message.text}"
    if message.attachments:
        formatted += "\n\nAttachments:"
        for attachment in message.attachments:
            formatted += f"\n- {attachment.type}: {attachment.url}"
    return formatted


def intercom_html_to_text(body: str) -> str:
    """Reduce an Intercom HTML comment body to plain text."""
    if "<" not in body:
        return body.strip()
    soup = BeautifulSoup(body, "html.parser")
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")
    text = soup.get_text()
    return _BLANK_LINES.sub("\n\n", text).strip()


def format_for_telegram(message: Message) -> str:
    """Mark the text as coming from Intercom, escaped for Telegram HTML mode."""
    return f"{INTERCOM_MARKER}\n{html.escape(intercom_html_to_text(message.text))}"
