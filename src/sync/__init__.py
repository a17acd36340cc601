"""Offline-first sync engine module."""

from .diff import DiffHunk, DiffResult, HunkKind, Side, compute_hunks, rebuild
from .engine import SyncCoordinator, SyncStats, close_workspace, get_workspace, open_workspace
from .errors import (
    ConfirmationRequiredError,
    ConflictNotOpenError,
    ConnectivityError,
    InvalidTransitionError,
    PersistenceError,
    RemoteRejectedError,
    SyncError,
    SyncInProgressError,
    UnknownConflictError,
)
from .merge import merge_non_overlapping
from .queue import PendingChangeQueue
from .resolver import ConflictFile, ConflictResolver, Outcome, Resolution
from .state import SyncState, SyncStatus

__all__ = [
    "SyncCoordinator",
    "SyncStats",
    "open_workspace",
    "get_workspace",
    "close_workspace",
    "DiffHunk",
    "DiffResult",
    "HunkKind",
    "Side",
    "compute_hunks",
    "rebuild",
    "merge_non_overlapping",
    "PendingChangeQueue",
    "ConflictFile",
    "ConflictResolver",
    "Outcome",
    "Resolution",
    "SyncState",
    "SyncStatus",
    "SyncError",
    "ConnectivityError",
    "RemoteRejectedError",
    "PersistenceError",
    "SyncInProgressError",
    "InvalidTransitionError",
    "UnknownConflictError",
    "ConflictNotOpenError",
    "ConfirmationRequiredError",
]
