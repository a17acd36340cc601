"""
Persistent storage models.

These models track local edits that have not reached the remote yet,
and the last known remote content of each path.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class ChangeAction(Enum):
    """Kind of local mutation recorded for a path."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def new_change_id() -> str:
    """Generate a unique id for a pending change."""
    return f"change-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class PendingChange:
    """
    A locally recorded, not-yet-committed mutation to one path.

    Attributes:
        path: Repository-relative path (identity of the entry)
        action: CREATE, UPDATE or DELETE
        payload: New file content (None for DELETE)
        id: Unique id, reissued whenever coalescing changes the entry
        timestamp: When the entry was last changed
        base_revision: Remote revision the edit was made against
            (None if the path did not exist remotely)
    """
    path: str
    action: ChangeAction
    payload: Optional[str] = None
    id: str = field(default_factory=new_change_id)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    base_revision: Optional[str] = None

    def evolve(self, **changes) -> "PendingChange":
        """Return a copy with a fresh id and timestamp plus `changes`."""
        changes.setdefault("id", new_change_id())
        changes.setdefault("timestamp", datetime.utcnow())
        return replace(self, **changes)

    @classmethod
    def from_row(cls, row: tuple) -> "PendingChange":
        """Create from SQLite row tuple."""
        (
            change_id,
            path,
            action,
            payload,
            timestamp,
            base_revision,
        ) = row

        return cls(
            id=change_id,
            path=path,
            action=ChangeAction(action),
            payload=payload,
            timestamp=datetime.fromisoformat(timestamp),
            base_revision=base_revision,
        )


@dataclass(frozen=True)
class CachedFile:
    """
    Last known remote content of a path.

    Serves as the merge base when both sides changed a file.
    """
    path: str
    content: str
    revision: str
    cached_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: tuple) -> "CachedFile":
        """Create from SQLite row tuple."""
        path, content, revision, cached_at = row
        return cls(
            path=path,
            content=content,
            revision=revision,
            cached_at=datetime.fromisoformat(cached_at) if cached_at else None,
        )
