"""Redis-backed mapping store, group lock and pending message queue."""

from src.storage.lock import GroupLock
from src.storage.mappings import MappingStore
from src.storage.queue import PendingEntry, PendingQueue

__all__ = [
    "GroupLock",
    "MappingStore",
    "PendingEntry",
    "PendingQueue",
]
