"""
Pending change queue.

Records and coalesces local mutations between sync passes. Every
mutation is written through to durable storage before it becomes
visible in memory.
"""

import logging
import threading
from typing import Iterable, Optional, Protocol, Sequence

from ..storage.models import ChangeAction, PendingChange

logger = logging.getLogger(__name__)


class LocalPersistence(Protocol):
    """Durable storage for the queue."""

    def load_queue(self) -> list[PendingChange]:
        ...

    def save_queue(self, changes: Sequence[PendingChange]) -> None:
        ...


def coalesce(
    existing: Optional[PendingChange],
    incoming: PendingChange,
    in_flight: bool = False,
) -> Optional[PendingChange]:
    """
    Combine the live entry for a path with a new mutation.

    Rules:
    - CREATE then UPDATE → CREATE with the new payload
    - CREATE then DELETE → no entry (net no-op), unless the CREATE is
      already being pushed; then the DELETE is queued after it
    - UPDATE then DELETE → DELETE
    - DELETE then CREATE/UPDATE → UPDATE if the path existed remotely,
      CREATE otherwise
    - same action again → payload replacement only

    Args:
        existing: Current entry for the path, if any
        incoming: The new mutation
        in_flight: Whether `existing` belongs to a running sync pass

    Returns:
        The entry to keep, or None if the path should have no entry
    """
    if existing is None:
        return incoming

    if existing.action == incoming.action and existing.payload == incoming.payload:
        return existing

    if existing.action is ChangeAction.CREATE:
        if incoming.action is ChangeAction.DELETE:
            return incoming if in_flight else None
        return existing.evolve(payload=incoming.payload)

    if existing.action is ChangeAction.UPDATE:
        if incoming.action is ChangeAction.DELETE:
            return existing.evolve(action=ChangeAction.DELETE, payload=None)
        return existing.evolve(payload=incoming.payload)

    # existing is DELETE
    if incoming.action is ChangeAction.DELETE:
        return existing
    existed = existing.base_revision is not None
    return existing.evolve(
        action=ChangeAction.UPDATE if existed else ChangeAction.CREATE,
        payload=incoming.payload,
    )


class PendingChangeQueue:
    """
    Insertion-ordered, path-keyed queue of local mutations.

    At most one live entry exists per path. Entries are removed only by
    `clear` after a confirmed commit, by `discard`, or by a CREATE+DELETE
    cancellation.

    Usage:
        queue = PendingChangeQueue(store)
        queue.load()

        queue.enqueue("models/orders.yaml", ChangeAction.UPDATE, "...")
        snapshot = queue.drain()
        # ... commit snapshot ...
        queue.clear([c.id for c in snapshot])
    """

    def __init__(
        self,
        persistence: LocalPersistence,
        lock: Optional[threading.RLock] = None,
    ):
        """
        Initialize queue.

        Args:
            persistence: Durable store the queue writes through to
            lock: Lock shared with the workspace owner (a private one if None)
        """
        self._persistence = persistence
        self._lock = lock or threading.RLock()
        self._entries: dict[str, PendingChange] = {}
        self._in_flight: set[str] = set()

    def load(self) -> int:
        """
        Replace the in-memory queue with the stored one.

        Returns:
            Number of entries loaded
        """
        with self._lock:
            changes = self._persistence.load_queue()
            self._entries = {c.path: c for c in changes}
            if self._entries:
                logger.info(f"Loaded {len(self._entries)} pending changes")
            return len(self._entries)

    def _commit(self, entries: dict[str, PendingChange]) -> None:
        # Persist first; memory only changes if the write succeeded
        self._persistence.save_queue(list(entries.values()))
        self._entries = entries

    def enqueue(
        self,
        path: str,
        action: ChangeAction,
        payload: Optional[str] = None,
        base_revision: Optional[str] = None,
    ) -> Optional[PendingChange]:
        """
        Record a local mutation of `path`, coalescing with any live entry.

        Args:
            path: Repository-relative path
            action: Mutation kind
            payload: New content (ignored for DELETE)
            base_revision: Remote revision the edit was made against

        Returns:
            The live entry for the path afterwards, or None if it cancelled out

        Raises:
            ValueError: If path is empty or a CREATE/UPDATE has no payload
            PersistenceError: If the queue cannot be persisted
        """
        if not path:
            raise ValueError("path must not be empty")
        action = ChangeAction(action)
        if action is ChangeAction.DELETE:
            payload = None
        elif payload is None:
            raise ValueError(f"{action.value} of {path} requires a payload")

        incoming = PendingChange(
            path=path,
            action=action,
            payload=payload,
            base_revision=base_revision,
        )

        with self._lock:
            existing = self._entries.get(path)
            in_flight = existing is not None and existing.id in self._in_flight
            result = coalesce(existing, incoming, in_flight=in_flight)

            if result is existing:
                logger.debug(f"No-op {action.value} for {path}")
                return existing

            entries = dict(self._entries)
            if result is None:
                del entries[path]
                logger.info(f"Pending create of {path} cancelled by delete")
            else:
                entries[path] = result
            self._commit(entries)

            if result is not None:
                logger.debug(f"Queued {result.action.value} for {path}")
            return result

    def drain(self) -> list[PendingChange]:
        """
        Snapshot the queue for a sync pass.

        Does not remove anything; call `clear` with the ids of the
        entries once the remote confirmed the commit, and `release` when
        the pass ends. Until then later edits of a drained path are
        queued after it instead of cancelling it.
        """
        with self._lock:
            snapshot = list(self._entries.values())
            self._in_flight = {c.id for c in snapshot}
            return snapshot

    def release(self) -> None:
        """Forget the snapshot handed out by the last `drain`."""
        with self._lock:
            self._in_flight = set()

    def entries(self) -> list[PendingChange]:
        """Live entries in insertion order."""
        with self._lock:
            return list(self._entries.values())

    def is_in_flight(self, path: str) -> bool:
        """Check if the live entry for `path` belongs to the drained snapshot."""
        with self._lock:
            existing = self._entries.get(path)
            return existing is not None and existing.id in self._in_flight

    def clear(self, ids: Iterable[str]) -> int:
        """
        Remove the entries with the given ids.

        Entries that were re-queued or coalesced after the snapshot was
        taken carry a new id and survive.

        Returns:
            Number of entries removed

        Raises:
            PersistenceError: If the queue cannot be persisted
        """
        targets = set(ids)
        with self._lock:
            entries = {p: c for p, c in self._entries.items() if c.id not in targets}
            removed = len(self._entries) - len(entries)
            if removed:
                self._commit(entries)
                self._in_flight -= targets
                logger.info(f"Cleared {removed} committed pending changes")
            return removed

    def discard(self, path: str) -> Optional[PendingChange]:
        """
        Drop the entry for a path without committing it.

        Returns:
            The dropped entry, or None if there was none
        """
        with self._lock:
            existing = self._entries.get(path)
            if existing is None:
                return None
            entries = dict(self._entries)
            del entries[path]
            self._commit(entries)
            logger.warning(f"Discarded pending {existing.action.value} of {path}")
            return existing

    def rebase(self, path: str, revision: Optional[str]) -> Optional[PendingChange]:
        """
        Move the base revision of the live entry for `path`.

        Used after a commit when a newer edit of the same path was queued
        during the pass, and after a conflict is resolved. The entry keeps
        its id.
        """
        with self._lock:
            existing = self._entries.get(path)
            if existing is None or existing.base_revision == revision:
                return existing
            entries = dict(self._entries)
            entries[path] = existing.evolve(id=existing.id, base_revision=revision)
            self._commit(entries)
            return entries[path]

    def get(self, path: str) -> Optional[PendingChange]:
        """Get the live entry for a path."""
        with self._lock:
            return self._entries.get(path)

    @property
    def pending_count(self) -> int:
        """Number of live entries."""
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.pending_count

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries
