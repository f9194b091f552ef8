#!/usr/bin/env python3
"""Inspect pending and dead-lettered messages in Redis.

Usage examples:
    # Every group with buffered or dead-lettered messages
    uv run python scripts/queues.py

    # One group, including the buffered message ids and texts
    uv run python scripts/queues.py --group -1001234567890 --show

    # Also print the bound Intercom conversation
    uv run python scripts/queues.py --bindings
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.errors import StoreError
from src.storage.connection import close_redis
from src.storage.mappings import MappingStore
from src.storage.queue import PendingQueue

PREVIEW_CHARS = 80


def _preview(text: str) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= PREVIEW_CHARS else text[: PREVIEW_CHARS - 3] + "..."


async def report(group: str | None, show: bool, bindings: bool) -> int:
    queue = PendingQueue.get()
    mappings = MappingStore.get()

    groups = [group] if group else await queue.groups_with_pending()
    if not groups:
        print("No pending or dead-lettered messages.")
        return 0

    for group_id in groups:
        pending = await queue.length(group_id)
        dead = await queue.dead_letter_length(group_id)
        line = f"{group_id}: pending={pending} dead_letters={dead}"
        if bindings:
            conversation_id = await mappings.get_conversation_id(group_id)
            line += f" conversation={conversation_id or '-'}"
        print(line)

        if show:
            for message in await queue.drain(group_id):
                print(f"  [pending] {message.id} attempts={message.attempts} {_preview(message.text)}")
            for message in await queue.dead_letters(group_id):
                print(f"  [dead]    {message.id} attempts={message.attempts} {_preview(message.text)}")
    return 0


async def _main(args: argparse.Namespace) -> int:
    try:
        return await report(args.group, args.show, args.bindings)
    except StoreError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        await close_redis()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect bridge message queues")
    parser.add_argument("--group", help="Only report this Telegram group id")
    parser.add_argument("--show", action="store_true", help="List buffered messages")
    parser.add_argument("--bindings", action="store_true", help="Print bound conversation ids")
    args = parser.parse_args()
    sys.exit(asyncio.run(_main(args)))


if __name__ == "__main__":
    main()
