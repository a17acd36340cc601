"""
Line-level diff engine.

Computes the difference between two text bodies and classifies it into
ordered hunks that a caller can resolve one block at a time.
"""

from dataclasses import dataclass, field
from difflib import SequenceMatcher
from enum import Enum
from typing import Mapping, Optional


LINE_TERMINATOR = "\n"


class HunkKind(Enum):
    """Classification of a contiguous block of a line diff."""

    # Same lines on both sides
    UNCHANGED = "unchanged"

    # Lines removed from ours and replaced by lines in theirs
    MODIFIED = "modified"

    # Lines only present in theirs
    ADDED = "added"

    # Lines only present in ours
    REMOVED = "removed"


class Side(Enum):
    """Which version of a hunk to keep."""
    OURS = "ours"
    THEIRS = "theirs"


@dataclass(frozen=True)
class DiffHunk:
    """
    A contiguous, classified block of a line-level diff.

    Attributes:
        id: Position of the hunk within its diff run (contiguous from 0)
        kind: Hunk classification
        ours_lines: Lines contributed by the "ours" body
        theirs_lines: Lines contributed by the "theirs" body
        ours_start_line: 1-based line number in "ours" where the hunk starts
        theirs_start_line: 1-based line number in "theirs" where the hunk starts
    """
    id: int
    kind: HunkKind
    ours_lines: tuple[str, ...]
    theirs_lines: tuple[str, ...]
    ours_start_line: int
    theirs_start_line: int

    @property
    def is_change(self) -> bool:
        """Check if the hunk needs a resolution."""
        return self.kind is not HunkKind.UNCHANGED

    def lines_for(self, side: Side) -> tuple[str, ...]:
        """Return the lines this hunk contributes when resolved to `side`."""
        return self.ours_lines if side is Side.OURS else self.theirs_lines


@dataclass(frozen=True)
class DiffResult:
    """
    Hunks of one diff run plus the terminator normalization applied.

    Attributes:
        hunks: Ordered hunks
        trailing_terminator: True if both bodies ended with a line
            terminator and the empty element after it was stripped
    """
    hunks: tuple[DiffHunk, ...] = field(default_factory=tuple)
    trailing_terminator: bool = False

    @property
    def change_hunks(self) -> list[DiffHunk]:
        """Hunks that are not unchanged."""
        return [h for h in self.hunks if h.is_change]

    def get(self, hunk_id: int) -> DiffHunk:
        """
        Look up a hunk by id.

        Raises:
            KeyError: If no hunk has this id
        """
        if 0 <= hunk_id < len(self.hunks):
            return self.hunks[hunk_id]
        raise KeyError(hunk_id)


def split_lines(ours: str, theirs: str) -> tuple[list[str], list[str], bool]:
    """
    Split both bodies into lines with a shared terminator normalization.

    The single empty element produced by splitting a body that ends with a
    terminator is stripped only when both bodies end with one. Otherwise
    the difference in terminators is kept as line content so that it shows
    up as a hunk and survives a rebuild.

    Returns:
        (ours_lines, theirs_lines, trailing_terminator)
    """
    if not isinstance(ours, str) or not isinstance(theirs, str):
        raise TypeError(
            f"diff inputs must be str, got {type(ours).__name__} "
            f"and {type(theirs).__name__}"
        )

    ours_lines = ours.split(LINE_TERMINATOR)
    theirs_lines = theirs.split(LINE_TERMINATOR)

    trailing = ours.endswith(LINE_TERMINATOR) and theirs.endswith(LINE_TERMINATOR)
    if trailing:
        ours_lines.pop()
        theirs_lines.pop()

    return ours_lines, theirs_lines, trailing


def join_lines(lines: list[str], trailing_terminator: bool) -> str:
    """Inverse of split_lines for one side."""
    text = LINE_TERMINATOR.join(lines)
    if trailing_terminator and lines:
        text += LINE_TERMINATOR
    return text


def edit_script(a: list[str], b: list[str]) -> list[tuple[str, int, int, int, int]]:
    """
    Compute a line edit script as contiguous equal/delete/insert runs.

    SequenceMatcher reports a delete immediately followed by an insert as
    a single "replace" opcode. It is split back into its two runs here so
    the classification below sees the raw operation sequence.
    """
    matcher = SequenceMatcher(None, a, b, autojunk=False)
    ops = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "replace":
            ops.append(("delete", i1, i2, j1, j1))
            ops.append(("insert", i2, i2, j1, j2))
        else:
            ops.append((tag, i1, i2, j1, j2))
    return ops


def compute_hunks(ours: str, theirs: str) -> DiffResult:
    """
    Compute classified hunks between two text bodies.

    Rules, applied left to right over the edit script:
    - equal run → UNCHANGED
    - delete run immediately followed by insert run → MODIFIED
    - delete run on its own → REMOVED
    - insert run on its own → ADDED

    Diffing is total: any two strings, including empty ones, produce a
    valid result.

    Args:
        ours: Local body
        theirs: Remote body

    Returns:
        DiffResult whose hunks cover both bodies exactly
    """
    ours_lines, theirs_lines, trailing = split_lines(ours, theirs)
    ops = edit_script(ours_lines, theirs_lines)

    hunks: list[DiffHunk] = []
    ours_line = 1
    theirs_line = 1
    i = 0

    while i < len(ops):
        tag, i1, i2, j1, j2 = ops[i]
        a = tuple(ours_lines[i1:i2])
        b = tuple(theirs_lines[j1:j2])

        if tag == "equal":
            kind = HunkKind.UNCHANGED
        elif tag == "delete":
            following = ops[i + 1] if i + 1 < len(ops) else None
            if following is not None and following[0] == "insert":
                _, _, _, k1, k2 = following
                b = tuple(theirs_lines[k1:k2])
                kind = HunkKind.MODIFIED
                i += 1
            else:
                kind = HunkKind.REMOVED
        else:
            kind = HunkKind.ADDED

        hunks.append(DiffHunk(
            id=len(hunks),
            kind=kind,
            ours_lines=a,
            theirs_lines=b,
            ours_start_line=ours_line,
            theirs_start_line=theirs_line,
        ))
        ours_line += len(a)
        theirs_line += len(b)
        i += 1

    return DiffResult(hunks=tuple(hunks), trailing_terminator=trailing)


def rebuild(
    result: DiffResult,
    resolutions: Optional[Mapping[int, Side]] = None,
) -> str:
    """
    Reconstruct text from hunks and per-hunk side choices.

    Unchanged hunks emit their shared lines; every other hunk emits the
    chosen side's lines, defaulting to OURS when unresolved. The
    terminator normalization of the diff run is reapplied, so resolving
    everything to one side reproduces that side byte for byte.
    """
    resolutions = resolutions or {}
    lines: list[str] = []
    for hunk in result.hunks:
        side = resolutions.get(hunk.id, Side.OURS)
        lines.extend(hunk.lines_for(side))
    return join_lines(lines, result.trailing_terminator)
