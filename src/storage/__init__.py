"""Persistent queue storage module."""

from .queue_store import PersistenceError, QueueStore
from .models import CachedFile, ChangeAction, PendingChange

__all__ = ["QueueStore", "PersistenceError", "CachedFile", "ChangeAction", "PendingChange"]
