"""Tests for the span differ and diff display helpers."""

from dotsync_mcp.reconcile.differ import (
    diff_lines,
    diff_stats,
    diff_texts,
    generate_diff,
    has_changes,
    is_binary,
    split_lines,
)
from dotsync_mcp.reconcile.models import SpanKind


def _rebuild(spans, side):
    keep = {SpanKind.EQUAL, SpanKind.DELETE if side == "local" else SpanKind.INSERT}
    return "".join(line for s in spans if s.kind in keep for line in s.lines)


class TestSplitLines:
    def test_keeps_line_endings(self):
        assert split_lines("a\nb\r\nc") == ["a\n", "b\r\n", "c"]

    def test_empty(self):
        assert split_lines("") == []


class TestDiffLines:
    """Tests for diff_lines() span output."""

    def test_identical_inputs_single_equal_span(self):
        spans = diff_texts("a\nb\n", "a\nb\n")
        assert [s.kind for s in spans] == [SpanKind.EQUAL]
        assert not has_changes(spans)

    def test_empty_inputs_no_spans(self):
        assert diff_lines([], []) == []

    def test_local_only_lines_are_deletes(self):
        spans = diff_texts("a\nextra\nb\n", "a\nb\n")
        assert [s.kind for s in spans] == [
            SpanKind.EQUAL,
            SpanKind.DELETE,
            SpanKind.EQUAL,
        ]
        assert spans[1].lines == ["extra\n"]
        assert spans[1].old_start == 1

    def test_repository_only_lines_are_inserts(self):
        spans = diff_texts("a\n", "a\nnew\n")
        assert spans[-1].kind == SpanKind.INSERT
        assert spans[-1].lines == ["new\n"]
        assert spans[-1].new_start == 1

    def test_replace_is_delete_then_insert(self):
        spans = diff_texts("a\nold\nc\n", "a\nnew\nc\n")
        kinds = [s.kind for s in spans]
        assert kinds == [
            SpanKind.EQUAL,
            SpanKind.DELETE,
            SpanKind.INSERT,
            SpanKind.EQUAL,
        ]

    def test_both_sides_reconstructed_exactly(self):
        local = "x = 1\ny = 2\nz = 3"
        repository = "x = 1\ny = 20\nz = 3\nw = 4\n"
        spans = diff_texts(local, repository)
        assert _rebuild(spans, "local") == local
        assert _rebuild(spans, "repository") == repository

    def test_missing_final_newline_is_a_change(self):
        assert has_changes(diff_texts("a\n", "a"))


class TestHelpers:
    def test_is_binary(self):
        assert is_binary(b"\x89PNG\r\n\x1a\n\x00\x00")
        assert not is_binary(b"plain text\n")

    def test_generate_diff_headers(self):
        diff = generate_diff("a\n", "b\n")
        assert diff.startswith("--- local\n+++ repository\n")
        assert "-a\n" in diff and "+b\n" in diff

    def test_generate_diff_identical_is_empty(self):
        assert generate_diff("same\n", "same\n") == ""

    def test_diff_stats(self):
        spans = diff_texts("a\nb\nc\n", "a\nB\nc\nd\n")
        assert diff_stats(spans) == (2, 1)
