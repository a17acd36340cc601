"""
Unit tests for the hunk-level conflict resolver.
"""

import pytest

from src.sync.diff import HunkKind, Side
from src.sync.errors import ConflictNotOpenError
from src.sync.resolver import ConflictFile, ConflictResolver, Outcome


@pytest.fixture
def resolver() -> ConflictResolver:
    return ConflictResolver()


@pytest.fixture
def two_sided() -> ConflictFile:
    """A file edited on both sides in the same line."""
    return ConflictFile(
        path="docs/guide.md",
        ours_content="a\nb\nc\n",
        theirs_content="a\nx\nc\n",
    )


@pytest.fixture
def theirs_only() -> ConflictFile:
    """A file deleted locally but changed remotely."""
    return ConflictFile(
        path="docs/old.md",
        ours_content="",
        theirs_content="remote text\n",
        ours_exists=False,
        theirs_exists=True,
    )


class TestOpenConflict:
    """Tests for opening sessions."""

    def test_two_sided_hunks(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test a two-sided file is diffed into hunks."""
        hunks = resolver.open_conflict(two_sided)

        assert [h.kind for h in hunks] == [HunkKind.UNCHANGED, HunkKind.MODIFIED, HunkKind.UNCHANGED]
        assert resolver.is_open(two_sided.path)
        assert resolver.conflict_count(two_sided.path) == 1

    def test_one_sided_has_no_hunks(self, resolver: ConflictResolver, theirs_only: ConflictFile):
        """Test a one-sided file opens with no hunks."""
        assert resolver.open_conflict(theirs_only) == []

    def test_unopened_path(self, resolver: ConflictResolver):
        """Test operating on a path without a session."""
        with pytest.raises(ConflictNotOpenError):
            resolver.choose_side("nope.md", 0, Side.OURS)
        with pytest.raises(ConflictNotOpenError):
            resolver.finalize("nope.md")


class TestChooseSide:
    """Tests for per-hunk resolution."""

    def test_choose_theirs_and_finalize(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test resolving the modified hunk to theirs."""
        hunks = resolver.open_conflict(two_sided)
        modified = next(h for h in hunks if h.kind is HunkKind.MODIFIED)

        content = resolver.choose_side(two_sided.path, modified.id, Side.THEIRS)
        resolution = resolver.finalize(two_sided.path)

        assert content == "a\nx\nc\n"
        assert resolution.outcome is Outcome.CONTENT
        assert resolution.content == "a\nx\nc\n"
        assert not resolver.is_open(two_sided.path)

    def test_unresolved_defaults_to_ours(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test finalizing without choices keeps the local content."""
        resolver.open_conflict(two_sided)
        assert resolver.finalize(two_sided.path).content == two_sided.ours_content

    def test_unknown_hunk(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test choosing a side for a missing hunk."""
        resolver.open_conflict(two_sided)
        with pytest.raises(ValueError):
            resolver.choose_side(two_sided.path, 99, Side.THEIRS)

    def test_unchanged_hunk(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test choosing a side for an unchanged hunk."""
        resolver.open_conflict(two_sided)
        with pytest.raises(ValueError):
            resolver.choose_side(two_sided.path, 0, Side.THEIRS)

    def test_resolutions_copy(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test the resolution map reflects choices."""
        resolver.open_conflict(two_sided)
        resolver.choose_side(two_sided.path, 1, Side.THEIRS)
        assert resolver.resolutions(two_sided.path) == {1: Side.THEIRS}


class TestAcceptAllAndManualEdit:
    """Tests for bulk resolution and manual overrides."""

    def test_accept_all_theirs(self, resolver: ConflictResolver):
        """Test accept_all reproduces the chosen side exactly."""
        conflict = ConflictFile(
            path="a.txt",
            ours_content="one\ntwo",
            theirs_content="uno\ntwo\ntres\n",
        )
        resolver.open_conflict(conflict)

        assert resolver.accept_all("a.txt", Side.THEIRS) == "uno\ntwo\ntres\n"
        assert resolver.accept_all("a.txt", Side.OURS) == "one\ntwo"

    def test_manual_edit_wins(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test hand-edited text is what gets committed."""
        resolver.open_conflict(two_sided)
        resolver.edit_resolved(two_sided.path, "a\nb and x\nc\n")
        resolver.choose_side(two_sided.path, 1, Side.THEIRS)

        assert resolver.resolved_content(two_sided.path) == "a\nb and x\nc\n"
        assert resolver.finalize(two_sided.path).content == "a\nb and x\nc\n"

    def test_accept_all_discards_manual_edit(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test accept_all drops an earlier manual edit."""
        resolver.open_conflict(two_sided)
        resolver.edit_resolved(two_sided.path, "hand edited\n")

        resolver.accept_all(two_sided.path, Side.THEIRS)

        assert resolver.resolved_content(two_sided.path) == two_sided.theirs_content

    def test_edit_requires_text(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test manual edits must be strings."""
        resolver.open_conflict(two_sided)
        with pytest.raises(TypeError):
            resolver.edit_resolved(two_sided.path, None)


class TestOneSided:
    """Tests for files that exist on one side only."""

    def test_keep_theirs(self, resolver: ConflictResolver, theirs_only: ConflictFile):
        """Test keeping the remote file finalizes to its full content."""
        resolver.open_conflict(theirs_only)
        resolver.choose_outcome(theirs_only.path, Outcome.KEEP)

        resolution = resolver.finalize(theirs_only.path)

        assert resolution.outcome is Outcome.KEEP
        assert resolution.content == "remote text\n"

    def test_delete(self, resolver: ConflictResolver, theirs_only: ConflictFile):
        """Test choosing delete finalizes to a delete action."""
        resolver.open_conflict(theirs_only)
        resolver.choose_outcome(theirs_only.path, Outcome.DELETE)

        resolution = resolver.finalize(theirs_only.path)

        assert resolution.is_delete
        assert resolution.content is None

    def test_default_is_keep(self, resolver: ConflictResolver):
        """Test an ours-only file keeps the local content by default."""
        conflict = ConflictFile(
            path="new.md",
            ours_content="local\n",
            theirs_content="",
            theirs_exists=False,
        )
        resolver.open_conflict(conflict)

        assert resolver.finalize("new.md").content == "local\n"

    def test_outcome_on_two_sided_rejected(self, resolver: ConflictResolver, two_sided: ConflictFile):
        """Test keep/delete is only for one-sided files."""
        resolver.open_conflict(two_sided)
        with pytest.raises(ValueError):
            resolver.choose_outcome(two_sided.path, Outcome.DELETE)

    def test_cancel(self, resolver: ConflictResolver, theirs_only: ConflictFile):
        """Test cancelling closes the session."""
        resolver.open_conflict(theirs_only)
        assert resolver.cancel(theirs_only.path) is True
        assert resolver.cancel(theirs_only.path) is False
