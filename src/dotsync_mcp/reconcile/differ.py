"""Line-level span diffing and diff display utilities.

Uses ``difflib.SequenceMatcher`` as the span-level differ and
``difflib.unified_diff`` for display.

Key design choices:

* Lines keep their line endings (``splitlines(True)``) so that joining
  spans back together reproduces the original bytes exactly, including a
  missing final newline.
* Sign convention: the local copy is the "before" side (Delete spans) and
  the repository copy the "after" side (Insert spans), regardless of which
  way a sync would go.
* A difflib ``replace`` opcode becomes a Delete span followed by an
  Insert span.
"""

from __future__ import annotations

import difflib

from .models import Span, SpanKind

_BINARY_SNIFF_BYTES = 8192


def split_lines(text: str) -> list[str]:
    """Split *text* into lines, keeping line endings."""
    return text.splitlines(True)


def diff_lines(
    local_lines: list[str], repository_lines: list[str]
) -> list[Span]:
    """Compute the ordered span sequence between two line lists.

    Args:
        local_lines: Lines of the local ("before") copy.
        repository_lines: Lines of the repository ("after") copy.

    Returns:
        Spans in file order.  Identical inputs yield at most one Equal
        span and never an Insert or Delete span.
    """
    matcher = difflib.SequenceMatcher(
        None, local_lines, repository_lines, autojunk=False
    )
    spans: list[Span] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            spans.append(
                Span(
                    kind=SpanKind.EQUAL,
                    lines=local_lines[i1:i2],
                    old_start=i1,
                    new_start=j1,
                )
            )
            continue
        if tag in ("delete", "replace"):
            spans.append(
                Span(
                    kind=SpanKind.DELETE,
                    lines=local_lines[i1:i2],
                    old_start=i1,
                    new_start=j1,
                )
            )
        if tag in ("insert", "replace"):
            spans.append(
                Span(
                    kind=SpanKind.INSERT,
                    lines=repository_lines[j1:j2],
                    old_start=i2,
                    new_start=j1,
                )
            )
    return spans


def diff_texts(local_text: str, repository_text: str) -> list[Span]:
    """Convenience wrapper: split both texts and diff them."""
    return diff_lines(split_lines(local_text), split_lines(repository_text))


def has_changes(spans: list[Span]) -> bool:
    """Return ``True`` if any span is an Insert or Delete."""
    return any(s.kind != SpanKind.EQUAL for s in spans)


def is_binary(data: bytes) -> bool:
    """Heuristic binary check: a NUL byte in the first 8 KiB."""
    return b"\x00" in data[:_BINARY_SNIFF_BYTES]


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "local",
    label_new: str = "repository",
) -> str:
    """Generate a unified diff between two strings.

    Args:
        old_content: The local content.
        new_content: The repository content.
        label_old: Label for the old file in the diff header.
        label_new: Label for the new file in the diff header.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    old_lines = old_content.splitlines(True)
    new_lines = new_content.splitlines(True)

    diff_lines_iter = difflib.unified_diff(
        old_lines,
        new_lines,
        fromfile=label_old,
        tofile=label_new,
    )

    return "".join(diff_lines_iter)


def diff_stats(spans: list[Span]) -> tuple[int, int]:
    """Return ``(lines_added, lines_removed)`` for a span sequence."""
    added = sum(len(s.lines) for s in spans if s.kind == SpanKind.INSERT)
    removed = sum(len(s.lines) for s in spans if s.kind == SpanKind.DELETE)
    return added, removed
