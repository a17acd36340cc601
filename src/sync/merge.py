"""
Non-overlapping hunk union.

Merges a local and a remote edit of the same file when both were made
against a known base and touch disjoint regions of it. Anything else is
reported as an overlap and left for the conflict resolver.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .diff import LINE_TERMINATOR, edit_script, join_lines

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Change:
    """A region of the base replaced by new lines on one side."""
    start: int
    end: int
    lines: tuple[str, ...]

    def overlaps(self, other: "Change") -> bool:
        """
        Check if two changes touch the same part of the base.

        Adjacent regions count as overlapping, as do two insertions at
        the same point: their relative order is ambiguous.
        """
        return self.start <= other.end and other.start <= self.end


def _split(text: str) -> list[str]:
    lines = text.split(LINE_TERMINATOR)
    if text.endswith(LINE_TERMINATOR):
        lines.pop()
    return lines


def _changes(base: list[str], other: list[str]) -> list[Change]:
    changes: list[Change] = []
    for tag, i1, i2, j1, j2 in edit_script(base, other):
        if tag == "equal":
            continue
        lines = tuple(other[j1:j2])
        # delete+insert pairs from the same replace collapse into one change
        if changes and tag == "insert" and changes[-1].end == i1:
            last = changes.pop()
            changes.append(Change(last.start, last.end, last.lines + lines))
        else:
            changes.append(Change(i1, i2, lines))
    return changes


def merge_non_overlapping(base: str, ours: str, theirs: str) -> Optional[str]:
    """
    Union the hunks of two edits of the same base.

    Args:
        base: Content both sides started from
        ours: Local edit
        theirs: Remote edit

    Returns:
        Merged text, or None if the edits overlap
    """
    if ours == theirs:
        return ours
    if ours == base:
        return theirs
    if theirs == base:
        return ours

    base_lines = _split(base)
    ours_changes = _changes(base_lines, _split(ours))
    theirs_changes = _changes(base_lines, _split(theirs))

    for mine in ours_changes:
        for remote in theirs_changes:
            if mine == remote:
                continue
            if mine.overlaps(remote):
                logger.debug(
                    f"Overlap at base lines {mine.start}-{mine.end} "
                    f"and {remote.start}-{remote.end}"
                )
                return None

    combined = sorted(set(ours_changes) | set(theirs_changes), key=lambda c: (c.start, c.end))

    merged: list[str] = []
    cursor = 0
    for change in combined:
        merged.extend(base_lines[cursor:change.start])
        merged.extend(change.lines)
        cursor = change.end
    merged.extend(base_lines[cursor:])

    # A side that changed the final terminator relative to base decides it
    base_trailing = base.endswith(LINE_TERMINATOR)
    trailing = base_trailing
    for side in (ours, theirs):
        if side.endswith(LINE_TERMINATOR) != base_trailing:
            trailing = not base_trailing

    return join_lines(merged, trailing)
