"""
Hunk-level conflict resolver.

Holds one resolution session per conflicted path. A session diffs the
two versions, records a side per hunk and rebuilds the merged body on
every choice. Files present on only one side get a binary keep/delete
choice instead of hunks.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .diff import DiffHunk, DiffResult, Side, compute_hunks, rebuild
from .errors import ConflictNotOpenError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictFile:
    """
    Two divergent versions of one file.

    Attributes:
        path: Repository-relative path
        ours_content: Local version ("" if it does not exist locally)
        theirs_content: Remote version ("" if it does not exist remotely)
        base_content: Common ancestor content, when known
        ours_exists: Whether the file exists locally
        theirs_exists: Whether the file exists remotely
        remote_revision: Remote revision the conflict was computed against
    """
    path: str
    ours_content: str
    theirs_content: str
    base_content: Optional[str] = None
    ours_exists: bool = True
    theirs_exists: bool = True
    remote_revision: Optional[str] = None

    @property
    def is_one_sided(self) -> bool:
        """Check if the file exists on exactly one side."""
        return self.ours_exists != self.theirs_exists


class Outcome(Enum):
    """How a finalized conflict should be committed."""

    # Commit the merged content of a two-sided conflict
    CONTENT = "content"

    # One-sided: keep the existing side's content
    KEEP = "keep"

    # One-sided: commit a deletion
    DELETE = "delete"


@dataclass(frozen=True)
class Resolution:
    """Result of finalizing a conflict."""
    path: str
    outcome: Outcome
    content: Optional[str] = None

    @property
    def is_delete(self) -> bool:
        return self.outcome is Outcome.DELETE


@dataclass
class _Session:
    file: ConflictFile
    diff: DiffResult
    resolutions: dict[int, Side] = field(default_factory=dict)
    content: str = ""
    manual_content: Optional[str] = None
    outcome: Optional[Outcome] = None


class ConflictResolver:
    """
    Per-path conflict resolution sessions.

    Resolving every hunk to OURS and finalizing reproduces the local
    content exactly; resolving every hunk to THEIRS reproduces the
    remote content exactly.

    Usage:
        resolver = ConflictResolver()
        hunks = resolver.open_conflict(conflict_file)
        resolver.choose_side(path, hunks[1].id, Side.THEIRS)
        resolution = resolver.finalize(path)
    """

    def __init__(self):
        self._sessions: dict[str, _Session] = {}

    def _session(self, path: str) -> _Session:
        try:
            return self._sessions[path]
        except KeyError:
            raise ConflictNotOpenError(f"No open conflict for {path}") from None

    def open_conflict(self, file: ConflictFile) -> list[DiffHunk]:
        """
        Start (or restart) a resolution session for a file.

        Args:
            file: The conflicted file

        Returns:
            Ordered hunks; empty for one-sided files
        """
        if file.is_one_sided:
            diff = DiffResult()
        else:
            diff = compute_hunks(file.ours_content, file.theirs_content)

        self._sessions[file.path] = _Session(
            file=file,
            diff=diff,
            content=file.ours_content,
        )

        logger.info(
            f"Opened conflict for {file.path}: "
            f"{len(diff.change_hunks)} conflicting hunks"
            + (" (one-sided)" if file.is_one_sided else "")
        )
        return list(diff.hunks)

    def is_open(self, path: str) -> bool:
        return path in self._sessions

    def hunks(self, path: str) -> list[DiffHunk]:
        return list(self._session(path).diff.hunks)

    def conflict_count(self, path: str) -> int:
        """Number of hunks that need a decision."""
        return len(self._session(path).diff.change_hunks)

    def resolutions(self, path: str) -> dict[int, Side]:
        """Copy of the current hunk → side map."""
        return dict(self._session(path).resolutions)

    def choose_side(self, path: str, hunk_id: int, side: Side) -> str:
        """
        Record a side for one hunk and rebuild the merged content.

        Once `edit_resolved` was called the choice is still recorded,
        but the manually edited text stays authoritative.

        Returns:
            The current resolved content

        Raises:
            ValueError: If the hunk does not exist or is unchanged
        """
        session = self._session(path)
        side = Side(side)
        try:
            hunk = session.diff.get(hunk_id)
        except KeyError:
            raise ValueError(f"{path} has no hunk {hunk_id}") from None
        if not hunk.is_change:
            raise ValueError(f"Hunk {hunk_id} of {path} is unchanged")

        session.resolutions[hunk_id] = side
        session.content = rebuild(session.diff, session.resolutions)
        return self.resolved_content(path)

    def accept_all(self, path: str, side: Side) -> str:
        """
        Resolve every conflicting hunk to one side.

        The content is taken directly from that side's source body. Any
        manual edit is discarded.

        Returns:
            The resolved content
        """
        session = self._session(path)
        side = Side(side)
        session.resolutions = {h.id: side for h in session.diff.change_hunks}
        session.manual_content = None
        if side is Side.OURS:
            session.content = session.file.ours_content
        else:
            session.content = session.file.theirs_content
        return session.content

    def edit_resolved(self, path: str, text: str) -> None:
        """Override the rebuilt content with hand-edited text."""
        if not isinstance(text, str):
            raise TypeError(f"resolved text must be str, got {type(text).__name__}")
        self._session(path).manual_content = text

    def choose_outcome(self, path: str, outcome: Outcome) -> None:
        """
        Pick keep or delete for a one-sided file.

        Raises:
            ValueError: If the file exists on both sides, or outcome is CONTENT
        """
        session = self._session(path)
        outcome = Outcome(outcome)
        if not session.file.is_one_sided:
            raise ValueError(f"{path} exists on both sides; resolve its hunks instead")
        if outcome is Outcome.CONTENT:
            raise ValueError("one-sided files resolve to KEEP or DELETE")
        session.outcome = outcome

    def resolved_content(self, path: str) -> str:
        """Content that would be committed right now."""
        session = self._session(path)
        if session.manual_content is not None:
            return session.manual_content
        return session.content

    def finalize(self, path: str) -> Resolution:
        """
        Produce the resolution to commit and close the session.

        One-sided files default to KEEP when no outcome was chosen.
        """
        session = self._session(path)
        file = session.file

        if file.is_one_sided:
            outcome = session.outcome or Outcome.KEEP
            if outcome is Outcome.DELETE:
                resolution = Resolution(path=path, outcome=Outcome.DELETE)
            else:
                kept = file.ours_content if file.ours_exists else file.theirs_content
                resolution = Resolution(path=path, outcome=Outcome.KEEP, content=kept)
        else:
            resolution = Resolution(
                path=path,
                outcome=Outcome.CONTENT,
                content=self.resolved_content(path),
            )

        del self._sessions[path]
        logger.info(f"Finalized conflict for {path}: {resolution.outcome.value}")
        return resolution

    def cancel(self, path: str) -> bool:
        """
        Abandon the session for a path without producing a resolution.

        Returns:
            True if a session was open
        """
        return self._sessions.pop(path, None) is not None
