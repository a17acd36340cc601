"""
Observable sync state.

The coordinator owns the only mutable copy. Observers subscribe and
receive an immutable snapshot after every change.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .resolver import ConflictFile

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Status of a workspace connection."""

    # Nothing in flight; ready to sync
    IDLE = "idle"

    # A sync pass is running
    SYNCING = "syncing"

    # Remote unreachable; retried on the next sync()
    OFFLINE = "offline"

    # A remote call failed; needs retry()
    ERROR = "error"

    # Overlapping edits need resolving
    CONFLICT = "conflict"


@dataclass(frozen=True)
class SyncState:
    """
    Snapshot of a workspace's sync status.

    Attributes:
        status: Current status
        pending_count: Number of queued local changes
        last_synced_at: Time of the last successful pass
        active_conflicts: Conflicts collected by the last pass
        last_error: Message of the last remote failure
    """
    status: SyncStatus = SyncStatus.IDLE
    pending_count: int = 0
    last_synced_at: Optional[datetime] = None
    active_conflicts: tuple[ConflictFile, ...] = field(default_factory=tuple)
    last_error: Optional[str] = None

    @property
    def conflict_paths(self) -> list[str]:
        return [c.path for c in self.active_conflicts]

    @property
    def is_online(self) -> bool:
        return self.status is not SyncStatus.OFFLINE

    def __str__(self) -> str:
        parts = [f"status={self.status.value}", f"pending={self.pending_count}"]
        if self.active_conflicts:
            parts.append(f"conflicts={len(self.active_conflicts)}")
        if self.last_error:
            parts.append(f"error={self.last_error}")
        return "SyncState(" + ", ".join(parts) + ")"


Listener = Callable[[SyncState], None]


class StateBroadcaster:
    """In-process publisher of SyncState snapshots."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, state: SyncState) -> None:
        """Deliver a snapshot to every listener."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception as exc:
                logger.error(f"Sync state listener failed: {exc}", exc_info=True)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()
