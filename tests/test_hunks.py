"""Tests for grouping spans into resolvable hunks."""

from dotsync_mcp.reconcile.differ import diff_lines
from dotsync_mcp.reconcile.hunks import build_hunks


def _lines(n: int) -> list[str]:
    return [f"line{i}\n" for i in range(n)]


def _edit(lines: list[str], *indexes: int) -> list[str]:
    out = list(lines)
    for i in indexes:
        out[i] = f"CHANGED{i}\n"
    return out


class TestBuildHunks:
    """Tests for build_hunks()."""

    def test_identical_files_have_no_hunks(self):
        base = _lines(10)
        assert build_hunks(diff_lines(base, list(base))) == []

    def test_single_change_with_context(self):
        base = _lines(20)
        hunks = build_hunks(diff_lines(base, _edit(base, 10)))

        assert len(hunks) == 1
        hunk = hunks[0]
        assert hunk.index == 0
        assert hunk.local_start == 10
        assert hunk.local_lines == ["line10\n"]
        assert hunk.repository_lines == ["CHANGED10\n"]
        assert hunk.context_before == ["line7\n", "line8\n", "line9\n"]
        assert hunk.context_after == ["line11\n", "line12\n", "line13\n"]

    def test_context_clamped_at_file_edges(self):
        base = _lines(4)
        hunk = build_hunks(diff_lines(base, _edit(base, 0)))[0]
        assert hunk.context_before == []
        assert hunk.context_after == ["line1\n", "line2\n", "line3\n"]

    def test_distant_changes_form_separate_hunks(self):
        base = _lines(20)
        hunks = build_hunks(diff_lines(base, _edit(base, 5, 15)))

        assert [h.index for h in hunks] == [0, 1]
        assert [h.local_start for h in hunks] == [5, 15]

    def test_close_changes_are_merged(self):
        """Changes separated by <= 2 * context equal lines share a hunk."""
        base = _lines(20)
        hunks = build_hunks(diff_lines(base, _edit(base, 5, 9)))

        assert len(hunks) == 1
        hunk = hunks[0]
        # Equal lines inside the hunk are carried on both sides
        assert hunk.local_lines == base[5:10]
        assert hunk.repository_lines == _edit(base, 5, 9)[5:10]

    def test_context_never_reaches_into_neighbour(self):
        base = _lines(20)
        hunks = build_hunks(
            diff_lines(base, _edit(base, 5, 8)), context_lines=3, merge_gap=0
        )

        assert len(hunks) == 2
        assert hunks[0].context_after == ["line6\n", "line7\n"]
        assert hunks[1].context_before == ["line6\n", "line7\n"]

    def test_insertion_at_end_of_file(self):
        base = _lines(5)
        hunk = build_hunks(diff_lines(base, base + ["appended\n"]))[0]

        assert hunk.local_start == 5
        assert hunk.local_lines == []
        assert hunk.repository_lines == ["appended\n"]
        assert hunk.context_after == []

    def test_zero_context(self):
        base = _lines(10)
        hunk = build_hunks(diff_lines(base, _edit(base, 4)), context_lines=0)[0]
        assert hunk.context_before == []
        assert hunk.context_after == []

    def test_hunks_start_pending(self):
        base = _lines(10)
        hunk = build_hunks(diff_lines(base, _edit(base, 4)))[0]
        assert not hunk.is_resolved
