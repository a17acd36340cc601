"""
Unit tests for non-overlapping edit merging.
"""

from src.sync.merge import Change, merge_non_overlapping


BASE = "one\ntwo\nthree\nfour\nfive\n"


class TestChange:
    """Tests for Change overlap detection."""

    def test_disjoint(self):
        """Test regions with a gap do not overlap."""
        assert not Change(0, 1, ("x",)).overlaps(Change(3, 4, ("y",)))

    def test_adjacent_regions_overlap(self):
        """Test touching regions count as overlapping."""
        assert Change(0, 1, ("x",)).overlaps(Change(1, 2, ("y",)))

    def test_inserts_at_same_point_overlap(self):
        """Test two insertions at the same base line overlap."""
        assert Change(2, 2, ("x",)).overlaps(Change(2, 2, ("y",)))


class TestMergeNonOverlapping:
    """Tests for merge_non_overlapping function."""

    def test_disjoint_edits_are_unioned(self):
        """Test edits at opposite ends of the file merge."""
        ours = "ONE\ntwo\nthree\nfour\nfive\n"
        theirs = "one\ntwo\nthree\nfour\nFIVE\n"

        assert merge_non_overlapping(BASE, ours, theirs) == "ONE\ntwo\nthree\nfour\nFIVE\n"

    def test_insert_and_delete_in_different_places(self):
        """Test an insertion and a deletion far apart merge."""
        ours = "one\nnew\ntwo\nthree\nfour\nfive\n"
        theirs = "one\ntwo\nthree\nfive\n"

        assert merge_non_overlapping(BASE, ours, theirs) == "one\nnew\ntwo\nthree\nfive\n"

    def test_same_line_changed_differently(self):
        """Test conflicting edits of one line are reported as overlap."""
        ours = "one\nTWO\nthree\nfour\nfive\n"
        theirs = "one\n2\nthree\nfour\nfive\n"

        assert merge_non_overlapping(BASE, ours, theirs) is None

    def test_adjacent_lines_are_overlap(self):
        """Test edits of neighbouring lines are not merged."""
        ours = "one\nTWO\nthree\nfour\nfive\n"
        theirs = "one\ntwo\nTHREE\nfour\nfive\n"

        assert merge_non_overlapping(BASE, ours, theirs) is None

    def test_identical_edits(self):
        """Test both sides making the same change merge to it."""
        ours = "one\ntwo\nTHREE\nfour\nfive\n"
        assert merge_non_overlapping(BASE, ours, ours) == ours

    def test_one_side_unchanged(self):
        """Test an untouched side yields the other side."""
        theirs = "one\ntwo\nthree\nfour\nfive\nsix\n"
        assert merge_non_overlapping(BASE, BASE, theirs) == theirs
        assert merge_non_overlapping(BASE, theirs, BASE) == theirs

    def test_same_change_plus_disjoint_change(self):
        """Test a shared edit next to a one-sided edit elsewhere."""
        ours = "ONE\ntwo\nthree\nfour\nfive\n"
        theirs = "ONE\ntwo\nthree\nfour\nFIVE\n"

        assert merge_non_overlapping(BASE, ours, theirs) == "ONE\ntwo\nthree\nfour\nFIVE\n"

    def test_terminator_change_is_kept(self):
        """Test a side dropping the final newline decides the result."""
        ours = "ONE\ntwo\nthree\nfour\nfive\n"
        theirs = "one\ntwo\nthree\nfour\nfive"

        assert merge_non_overlapping(BASE, ours, theirs) == "ONE\ntwo\nthree\nfour\nfive"

    def test_local_terminator_removal_survives_remote_edit(self):
        """Test ours dropping the final newline is kept when theirs edits elsewhere."""
        base = "a\nb\nc\n"
        ours = "A\nb\nc"
        theirs = "a\nb\nC\n"

        assert merge_non_overlapping(base, ours, theirs) == "A\nb\nC"

    def test_terminator_added_by_one_side(self):
        """Test a final newline added on one side is kept."""
        base = "a\nb\nc"
        ours = "a\nB\nc"
        theirs = "a\nb\nc\n"

        assert merge_non_overlapping(base, ours, theirs) == "a\nB\nc\n"
