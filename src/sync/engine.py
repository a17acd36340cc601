"""
Offline-first sync coordinator.

Drives the per-workspace state machine: pulls the latest remote version
of every queued path, pushes what can be pushed, auto-merges disjoint
edits and hands overlapping ones to the conflict resolver.
Nothing queued locally is ever dropped on a failure.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional, Protocol

from ..github.models import CommitResult, FileChange, RemoteFile
from ..storage.models import CachedFile, ChangeAction, PendingChange
from .diff import DiffHunk, Side
from .errors import (
    ConfirmationRequiredError,
    ConnectivityError,
    InvalidTransitionError,
    PersistenceError,
    RemoteRejectedError,
    SyncInProgressError,
    UnknownConflictError,
)
from .merge import merge_non_overlapping
from .queue import LocalPersistence, PendingChangeQueue
from .resolver import ConflictFile, ConflictResolver
from .state import Listener, StateBroadcaster, SyncState, SyncStatus

logger = logging.getLogger(__name__)


class RemoteGateway(Protocol):
    """Access to the remote repository."""

    def fetch_latest(self, path: str) -> Optional[RemoteFile]:
        ...

    def commit(
        self,
        files: list[FileChange],
        message: str,
        expected: Optional[dict[str, Optional[str]]] = None,
    ) -> CommitResult:
        ...


    def check_connectivity(self) -> bool:
        ...


class WorkspaceStore(LocalPersistence, Protocol):
    """Durable queue plus the remote file cache and workspace metadata."""

    def get_cached(self, path: str) -> Optional[CachedFile]:
        ...

    def put_cached(self, path: str, content: str, revision: str) -> CachedFile:
        ...

    def delete_cached(self, path: str) -> bool:
        ...

    def get_last_synced_at(self) -> Optional[datetime]:
        ...

    def set_last_synced_at(self, when: datetime) -> None:
        ...


@dataclass
class SyncStats:
    """Statistics from a sync pass."""
    total_changes: int = 0
    pushed: int = 0
    merged: int = 0
    dropped: int = 0
    conflicts: int = 0

    def __str__(self) -> str:
        return (
            f"Sync pass: {self.total_changes} pending changes, "
            f"{self.pushed} pushed, {self.merged} auto-merged, "
            f"{self.dropped} already up to date, {self.conflicts} conflicts"
        )


@dataclass
class _Plan:
    """What one pass decided for its drained snapshot."""
    pushes: list[tuple[PendingChange, FileChange]] = field(default_factory=list)
    dropped: list[tuple[PendingChange, Optional[RemoteFile]]] = field(default_factory=list)
    conflicts: list[tuple[PendingChange, ConflictFile]] = field(default_factory=list)
    expected: dict[str, Optional[str]] = field(default_factory=dict)
    merged: int = 0

    def push(self, change: PendingChange, file_change: FileChange, remote_revision: Optional[str]) -> None:
        self.pushes.append((change, file_change))
        self.expected[change.path] = remote_revision


class SyncCoordinator:
    """
    Owns the sync state of one open workspace.

    Core principles:
    - State transitions and queue mutations are serialized on one lock
    - The lock is not held across remote calls, so edits made during a
      pass are accepted and picked up by the next pass
    - A pass pushes its whole batch in one atomic commit or nothing
    - The queue is only cleared for entries the remote confirmed

    Usage:
        coordinator = SyncCoordinator(gateway=gateway, store=store)
        coordinator.open()

        coordinator.enqueue_change("tables/orders.yaml", ChangeAction.UPDATE, text)
        state = coordinator.sync()
        if state.status is SyncStatus.CONFLICT:
            hunks = coordinator.open_conflict(state.conflict_paths[0])
    """

    def __init__(
        self,
        gateway: RemoteGateway,
        store: WorkspaceStore,
        commit_message: str = "Sync offline changes",
        resolver: Optional[ConflictResolver] = None,
    ):
        """
        Initialize sync coordinator.

        Args:
            gateway: Remote repository gateway
            store: Durable workspace store
            commit_message: Message used for sync commits
            resolver: Conflict resolver (a fresh one if None)
        """
        self.gateway = gateway
        self.store = store
        self.commit_message = commit_message
        self.resolver = resolver or ConflictResolver()

        self._lock = threading.RLock()
        self.queue = PendingChangeQueue(store, lock=self._lock)
        self._broadcaster = StateBroadcaster()
        self._state = SyncState()
        self._in_flight = False
        self._conflict_changes: dict[str, str] = {}
        self._last_stats: Optional[SyncStats] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle and observation
    # ------------------------------------------------------------------

    def open(self) -> "SyncCoordinator":
        """Load the durable queue and publish the initial state."""
        with self._lock:
            self.queue.load()
            self._set_state(
                status=SyncStatus.IDLE,
                last_synced_at=self.store.get_last_synced_at(),
            )
        logger.info(f"Workspace opened with {self.queue.pending_count} pending changes")
        return self

    def close(self) -> None:
        """Tear down: drop open resolver sessions and subscribers."""
        with self._lock:
            for conflict in self._state.active_conflicts:
                self.resolver.cancel(conflict.path)
            self._broadcaster.clear()
            self._closed = True
        logger.info("Workspace closed")

    @property
    def state(self) -> SyncState:
        """Current state snapshot."""
        with self._lock:
            return self._state

    @property
    def last_stats(self) -> Optional[SyncStats]:
        return self._last_stats

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Observe state changes.

        Returns:
            Callable that removes the subscription
        """
        return self._broadcaster.subscribe(listener)

    def unsubscribe(self, listener: Listener) -> None:
        self._broadcaster.unsubscribe(listener)

    def _set_state(self, **changes) -> SyncState:
        with self._lock:
            changes.setdefault("pending_count", self.queue.pending_count)
            self._state = replace(self._state, **changes)
            state = self._state
        logger.debug(f"{state}")
        self._broadcaster.publish(state)
        return state

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidTransitionError("Workspace is closed")

    # ------------------------------------------------------------------
    # Local edits
    # ------------------------------------------------------------------

    def enqueue_change(
        self,
        path: str,
        action: ChangeAction,
        payload: Optional[str] = None,
    ) -> Optional[PendingChange]:
        """
        Record a local mutation.

        Writing back the exact content last seen on the remote removes
        any pending change for the path instead of queuing one. While a
        pass is pushing the path, or the path is in conflict, the revert
        is queued like any other edit so it lands after the pushed one.

        Returns:
            The live pending change for the path, or None

        Raises:
            PersistenceError: If the queue cannot be persisted
        """
        self._ensure_open()
        action = ChangeAction(action)

        with self._lock:
            cached = self.store.get_cached(path)
            if (
                cached is not None
                and action is not ChangeAction.DELETE
                and payload == cached.content
                and not self._in_flight
                and path not in self._state.conflict_paths
            ):
                self.queue.discard(path)
                self._set_state()
                return None

            change = self.queue.enqueue(
                path,
                action,
                payload,
                base_revision=cached.revision if cached else None,
            )
            self._set_state()
            return change

    def discard_change(self, path: str, confirm: bool = False) -> Optional[PendingChange]:
        """
        Drop the pending change of a path that is not in conflict.

        Raises:
            ConfirmationRequiredError: If confirm is not set
            InvalidTransitionError: If a pass is running or the path is in conflict
        """
        self._ensure_open()
        if not confirm:
            raise ConfirmationRequiredError(
                f"Discarding the local change to {path} loses it; pass confirm=True"
            )
        with self._lock:
            if self._in_flight:
                raise InvalidTransitionError("Cannot discard while a sync pass is running")
            if path in self._state.conflict_paths:
                raise InvalidTransitionError(f"{path} is in conflict; use discard_conflict()")
            dropped = self.queue.discard(path)
            self._set_state()
            return dropped

    def read_file(self, path: str) -> str:
        """
        Read the current content of a path.

        Pending local content wins; otherwise the remote is asked and the
        answer cached, falling back to the cache when unreachable.

        Raises:
            KeyError: If the file is deleted locally or unavailable
        """
        change = self.queue.get(path)
        if change is not None:
            if change.action is ChangeAction.DELETE:
                raise KeyError(f"{path} is deleted locally")
            return change.payload or ""

        cached = self.store.get_cached(path)
        if self._state.status is not SyncStatus.OFFLINE:
            try:
                remote = self.gateway.fetch_latest(path)
            except ConnectivityError:
                remote = None
                logger.warning(f"Failed to fetch {path}, using cached version")
            else:
                if remote is None:
                    raise KeyError(f"{path} does not exist")
                self.store.put_cached(path, remote.content, remote.revision)
                return remote.content

        if cached is not None:
            return cached.content
        raise KeyError(f"{path} is not available offline")

    def set_connectivity(self, online: bool) -> SyncState:
        """Apply an external online/offline signal."""
        with self._lock:
            status = self._state.status
            if not online and status is SyncStatus.IDLE:
                return self._set_state(status=SyncStatus.OFFLINE)
            if online and status is SyncStatus.OFFLINE:
                return self._set_state(status=SyncStatus.IDLE)
            return self._state

    # ------------------------------------------------------------------
    # Sync pass
    # ------------------------------------------------------------------

    def sync(self) -> SyncState:
        """
        Run one sync pass.

        Steps:
        1. Connectivity check (OFFLINE and stop if it fails)
        2. Snapshot the queue
        3. Fetch the latest remote version of every queued path
        4. Push, auto-merge, or collect a conflict per path
        5. Commit the batch atomically and clear the committed entries

        Returns:
            The state after the pass

        Raises:
            SyncInProgressError: If a pass is already running
            InvalidTransitionError: In ERROR or CONFLICT status
        """
        self._ensure_open()
        with self._lock:
            if self._in_flight:
                raise SyncInProgressError("A sync pass is already running")
            status = self._state.status
            if status in (SyncStatus.ERROR, SyncStatus.CONFLICT):
                raise InvalidTransitionError(
                    f"Cannot sync while {status.value}; "
                    + ("call retry()" if status is SyncStatus.ERROR else "resolve conflicts first")
                )
            self._in_flight = True

        try:
            return self._run_pass()
        finally:
            with self._lock:
                self._in_flight = False
                self.queue.release()

    def retry(self) -> SyncState:
        """Leave ERROR (or OFFLINE) and run a new pass."""
        with self._lock:
            status = self._state.status
            if status not in (SyncStatus.ERROR, SyncStatus.OFFLINE):
                raise InvalidTransitionError(f"Nothing to retry while {status.value}")
            if status is SyncStatus.ERROR:
                logger.info(f"Retrying after error: {self._state.last_error}")
                self._set_state(status=SyncStatus.IDLE, last_error=None)
        return self.sync()

    def _run_pass(self) -> SyncState:
        if not self.gateway.check_connectivity():
            logger.info("Remote unreachable, staying offline")
            return self._set_state(status=SyncStatus.OFFLINE)

        with self._lock:
            snapshot = self.queue.drain()
            self._set_state(status=SyncStatus.SYNCING, last_error=None, active_conflicts=())

        stats = SyncStats(total_changes=len(snapshot))
        self._last_stats = stats
        logger.info(f"Starting sync pass with {len(snapshot)} pending changes")

        try:
            plan = self._plan(snapshot)
            stats.merged = plan.merged
            stats.conflicts = len(plan.conflicts)

            if plan.conflicts:
                return self._enter_conflict(plan)

            result = None
            if plan.pushes:
                result = self.gateway.commit(
                    [file_change for _, file_change in plan.pushes],
                    self.commit_message,
                    expected=plan.expected,
                )
            stats.pushed = len(plan.pushes)
            stats.dropped = len(plan.dropped)
        except (ConnectivityError, RemoteRejectedError) as e:
            return self._fail(e)
        except PersistenceError as e:
            self._fail(e)
            raise

        with self._lock:
            now = datetime.utcnow()
            try:
                self._apply_commit(plan, result)
                self.store.set_last_synced_at(now)
            except PersistenceError as e:
                self._fail(e)
                raise
            logger.info(str(stats))
            return self._set_state(status=SyncStatus.IDLE, last_synced_at=now)

    def _fail(self, error: Exception) -> SyncState:
        logger.error(f"Sync pass failed, pending changes kept: {error}")
        return self._set_state(status=SyncStatus.ERROR, last_error=str(error))

    def _plan(self, snapshot: list[PendingChange]) -> _Plan:
        """Decide per queued path whether to push, merge, drop or conflict."""
        plan = _Plan()

        for change in snapshot:
            remote = self.gateway.fetch_latest(change.path)
            remote_revision = remote.revision if remote else None

            if remote_revision == change.base_revision:
                if change.action is ChangeAction.DELETE and remote is None:
                    plan.dropped.append((change, None))
                else:
                    plan.push(change, self._file_change(change), remote_revision)
                continue

            logger.info(f"{change.path} changed remotely since it was edited")

            if change.action is ChangeAction.DELETE:
                if remote is None:
                    plan.dropped.append((change, None))
                else:
                    plan.conflicts.append((change, ConflictFile(
                        path=change.path,
                        ours_content="",
                        theirs_content=remote.content,
                        base_content=self._base_content(change),
                        ours_exists=False,
                        theirs_exists=True,
                        remote_revision=remote.revision,
                    )))
                continue

            payload = change.payload or ""

            if remote is None:
                if change.action is ChangeAction.CREATE:
                    plan.push(change, self._file_change(change), None)
                else:
                    plan.conflicts.append((change, ConflictFile(
                        path=change.path,
                        ours_content=payload,
                        theirs_content="",
                        base_content=self._base_content(change),
                        ours_exists=True,
                        theirs_exists=False,
                    )))
                continue

            if payload == remote.content:
                plan.dropped.append((change, remote))
                continue

            base = self._base_content(change)
            merged = None
            if base is not None:
                merged = merge_non_overlapping(base, payload, remote.content)

            if merged is not None:
                logger.info(f"Auto-merged non-overlapping edits of {change.path}")
                plan.merged += 1
                plan.push(
                    change,
                    FileChange(path=change.path, action=ChangeAction.UPDATE, content=merged),
                    remote.revision,
                )
            else:
                plan.conflicts.append((change, ConflictFile(
                    path=change.path,
                    ours_content=payload,
                    theirs_content=remote.content,
                    base_content=base,
                    remote_revision=remote.revision,
                )))

        return plan

    def _base_content(self, change: PendingChange) -> Optional[str]:
        if change.base_revision is None:
            return None
        cached = self.store.get_cached(change.path)
        if cached is not None and cached.revision == change.base_revision:
            return cached.content
        return None

    @staticmethod
    def _file_change(change: PendingChange) -> FileChange:
        return FileChange(path=change.path, action=change.action, content=change.payload)

    def _apply_commit(self, plan: _Plan, result: Optional[CommitResult]) -> None:
        """Record a confirmed commit: cache, clear, rebase survivors."""
        revisions: dict[str, Optional[str]] = {}

        for change, file_change in plan.pushes:
            if file_change.action is ChangeAction.DELETE:
                self.store.delete_cached(change.path)
                revisions[change.path] = None
            else:
                revision = result.file_revisions[change.path]
                self.store.put_cached(change.path, file_change.content or "", revision)
                revisions[change.path] = revision

        for change, remote in plan.dropped:
            if remote is None:
                self.store.delete_cached(change.path)
                revisions[change.path] = None
            else:
                self.store.put_cached(change.path, remote.content, remote.revision)
                revisions[change.path] = remote.revision

        committed = [c.id for c, _ in plan.pushes] + [c.id for c, _ in plan.dropped]
        self.queue.clear(committed)

        for path, revision in revisions.items():
            if path in self.queue:
                logger.info(f"{path} was edited during the pass; keeping newer edit")
                self.queue.rebase(path, revision)

    def _enter_conflict(self, plan: _Plan) -> SyncState:
        with self._lock:
            self._conflict_changes = {c.path: c.id for c, _ in plan.conflicts}
            conflicts = tuple(conflict for _, conflict in plan.conflicts)
            logger.warning(
                f"Sync pass found {len(conflicts)} conflicts: "
                f"{', '.join(c.path for c in conflicts)}"
            )
            return self._set_state(status=SyncStatus.CONFLICT, active_conflicts=conflicts)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def _active_conflict(self, path: str) -> ConflictFile:
        if self._state.status is not SyncStatus.CONFLICT:
            raise InvalidTransitionError(f"No conflicts while {self._state.status.value}")
        for conflict in self._state.active_conflicts:
            if conflict.path == path:
                return conflict
        raise UnknownConflictError(f"{path} is not in conflict")

    def open_conflict(self, path: str) -> list[DiffHunk]:
        """Start resolving an active conflict; returns its hunks."""
        with self._lock:
            conflict = self._active_conflict(path)
        return self.resolver.open_conflict(conflict)

    def choose_side(self, path: str, hunk_id: int, side: Side) -> str:
        return self.resolver.choose_side(path, hunk_id, side)

    def accept_all(self, path: str, side: Side) -> str:
        return self.resolver.accept_all(path, side)

    def edit_resolved(self, path: str, text: str) -> None:
        self.resolver.edit_resolved(path, text)

    def finalize_conflict(self, path: str) -> SyncState:
        """Finalize the resolver session for `path` and commit the result."""
        resolution = self.resolver.finalize(path)
        content = None if resolution.is_delete else resolution.content
        return self.resolve_conflict(path, content)

    def resolve_conflict(self, path: str, content: Optional[str]) -> SyncState:
        """
        Commit the resolved content of one conflicted file.

        Args:
            path: Conflicted path
            content: Resolved content, or None to commit a deletion

        Returns:
            The state afterwards

        Raises:
            InvalidTransitionError: If not in CONFLICT status
            UnknownConflictError: If the path is not in conflict
            RemoteRejectedError, ConnectivityError: If the commit fails; the
                conflict stays active
        """
        self._ensure_open()
        with self._lock:
            conflict = self._active_conflict(path)

        remote_unchanged = (
            (content is None and not conflict.theirs_exists)
            or (content is not None and conflict.theirs_exists and content == conflict.theirs_content)
        )

        revision: Optional[str] = conflict.remote_revision
        if not remote_unchanged:
            if content is None:
                file_change = FileChange(path=path, action=ChangeAction.DELETE)
            else:
                action = ChangeAction.UPDATE if conflict.theirs_exists else ChangeAction.CREATE
                file_change = FileChange(path=path, action=action, content=content)
            try:
                result = self.gateway.commit(
                    [file_change],
                    f"{self.commit_message}: resolve {path}",
                    expected={path: conflict.remote_revision if conflict.theirs_exists else None},
                )
            except (ConnectivityError, RemoteRejectedError) as e:
                logger.error(f"Committing resolution of {path} failed: {e}")
                self._set_state(last_error=str(e))
                raise
            revision = None if content is None else result.file_revisions.get(path)

        logger.info(f"Resolved conflict for {path}")
        with self._lock:
            if content is None or revision is None:
                self.store.delete_cached(path)
            else:
                self.store.put_cached(path, content, revision)
            self._settle_conflict(path, revision)
        return self._after_conflict()

    def discard_conflict(self, path: str, confirm: bool = False) -> SyncState:
        """
        Drop the local pending change of a conflicted path without committing.

        This loses the local edit, so the caller must pass confirm=True.

        Raises:
            ConfirmationRequiredError: If confirm is not set
        """
        self._ensure_open()
        if not confirm:
            raise ConfirmationRequiredError(
                f"Discarding the local change to {path} loses it; pass confirm=True"
            )

        with self._lock:
            conflict = self._active_conflict(path)
            self.queue.discard(path)
            if conflict.theirs_exists and conflict.remote_revision:
                self.store.put_cached(path, conflict.theirs_content, conflict.remote_revision)
            else:
                self.store.delete_cached(path)
            self._settle_conflict(path, None)
            logger.warning(f"Discarded local change to {path}")
        return self._after_conflict()

    def _settle_conflict(self, path: str, revision: Optional[str]) -> None:
        change_id = self._conflict_changes.pop(path, None)
        if change_id is not None:
            self.queue.clear([change_id])
        if path in self.queue:
            # Edited again while in conflict; keep it against the new base
            self.queue.rebase(path, revision)
        self.resolver.cancel(path)
        remaining = tuple(c for c in self._state.active_conflicts if c.path != path)
        self._set_state(active_conflicts=remaining)

    def _after_conflict(self) -> SyncState:
        with self._lock:
            if self._state.active_conflicts:
                return self._state
            self._set_state(status=SyncStatus.IDLE, last_error=None)
            if self.queue.pending_count == 0:
                now = datetime.utcnow()
                self.store.set_last_synced_at(now)
                return self._set_state(last_synced_at=now)
        logger.info("All conflicts resolved, syncing remaining changes")
        return self.sync()


_workspaces: dict[str, SyncCoordinator] = {}
_workspaces_lock = threading.Lock()


def open_workspace(workspace_id: str, gateway: RemoteGateway, store: WorkspaceStore, **kwargs) -> SyncCoordinator:
    """
    Open the single coordinator for a workspace.

    Raises:
        InvalidTransitionError: If the workspace is already open
    """
    with _workspaces_lock:
        if workspace_id in _workspaces:
            raise InvalidTransitionError(f"Workspace {workspace_id} is already open")
        coordinator = SyncCoordinator(gateway=gateway, store=store, **kwargs)
        _workspaces[workspace_id] = coordinator
    try:
        return coordinator.open()
    except Exception:
        with _workspaces_lock:
            _workspaces.pop(workspace_id, None)
        raise


def get_workspace(workspace_id: str) -> Optional[SyncCoordinator]:
    """Get the coordinator of an open workspace."""
    with _workspaces_lock:
        return _workspaces.get(workspace_id)


def close_workspace(workspace_id: str) -> bool:
    """
    Tear down the coordinator of a workspace.

    Returns:
        True if the workspace was open
    """
    with _workspaces_lock:
        coordinator = _workspaces.pop(workspace_id, None)
    if coordinator is None:
        return False
    coordinator.close()
    return True
