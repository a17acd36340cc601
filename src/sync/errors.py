"""
Error taxonomy for the sync engine.

Network and remote errors are recoverable by retry and never destroy
queued local state. Persistence errors (raised by the queue store)
propagate synchronously to the caller that triggered the write.
"""

from typing import Optional

from ..storage.queue_store import PersistenceError


class SyncError(Exception):
    """Base class for all sync engine errors."""
    pass


class ConnectivityError(SyncError):
    """Raised when the remote cannot be reached (no network, timeout)."""
    pass


class RemoteRejectedError(SyncError):
    """
    Raised when the remote refuses a request.

    Covers auth failures, permission denied and stale revisions. The
    message is surfaced verbatim to the caller.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SyncInProgressError(SyncError):
    """Raised when sync() is called while a pass is already running."""
    pass


class InvalidTransitionError(SyncError):
    """Raised when an operation is not allowed in the current sync status."""
    pass


class UnknownConflictError(SyncError):
    """Raised when a path is not among the active conflicts."""
    pass


class ConflictNotOpenError(SyncError):
    """Raised when a resolver operation targets a path with no open session."""
    pass


class ConfirmationRequiredError(SyncError):
    """Raised when a data-loss action is attempted without confirmation."""
    pass
