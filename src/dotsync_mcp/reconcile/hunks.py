"""Group a flat span sequence into mergeable hunks.

Consecutive Insert/Delete spans belong to the same hunk unless they are
separated by more than ``merge_gap`` equal lines (default: twice the
context size, the same grouping rule unified diffs use).  Equal lines that
fall *inside* a merged hunk are carried on both sides, so each hunk's
``local_lines`` is always the exact local region it replaces.

Each hunk also carries up to ``context_lines`` unmodified lines on either
side, clamped so they never reach into a neighbouring hunk's divergent
region.  When two hunks are close the trailing context of one and the
leading context of the next may overlap; the merge resolver emits such
shared lines once.
"""

from __future__ import annotations

from dataclasses import dataclass

from .models import Hunk, Span, SpanKind

DEFAULT_CONTEXT_LINES = 3


@dataclass
class _Region:
    old_start: int
    old_end: int
    new_start: int
    new_end: int


def build_hunks(
    spans: list[Span],
    context_lines: int = DEFAULT_CONTEXT_LINES,
    merge_gap: int | None = None,
) -> list[Hunk]:
    """Convert spans into ``Hunk`` records with indexes 0..n-1.

    Args:
        spans: Ordered spans from ``differ.diff_lines``.
        context_lines: Unmodified lines kept on each side of a hunk.
        merge_gap: Largest run of equal lines that still joins two changes
            into one hunk.  Defaults to ``2 * context_lines``.

    Returns:
        Hunks in file order; an empty list when there are no changes.
    """
    if merge_gap is None:
        merge_gap = 2 * context_lines

    local: list[str] = []
    repository: list[str] = []
    for span in spans:
        if span.kind in (SpanKind.EQUAL, SpanKind.DELETE):
            local.extend(span.lines)
        if span.kind in (SpanKind.EQUAL, SpanKind.INSERT):
            repository.extend(span.lines)

    regions = _group_changes(spans, merge_gap)

    hunks: list[Hunk] = []
    for i, region in enumerate(regions):
        prev_end = regions[i - 1].old_end if i > 0 else 0
        next_start = (
            regions[i + 1].old_start if i + 1 < len(regions) else len(local)
        )
        before_start = max(prev_end, region.old_start - context_lines)
        after_end = min(next_start, region.old_end + context_lines)
        hunks.append(
            Hunk(
                index=i,
                local_start=region.old_start,
                context_before=local[before_start : region.old_start],
                context_after=local[region.old_end : after_end],
                local_lines=local[region.old_start : region.old_end],
                repository_lines=repository[
                    region.new_start : region.new_end
                ],
            )
        )
    return hunks


def _group_changes(spans: list[Span], merge_gap: int) -> list[_Region]:
    """Collapse change spans into regions, joining those close together."""
    regions: list[_Region] = []
    current: _Region | None = None
    equal_run = 0

    for span in spans:
        if span.kind == SpanKind.EQUAL:
            equal_run += len(span.lines)
            continue

        if span.kind == SpanKind.DELETE:
            old_start, old_end = (
                span.old_start,
                span.old_start + len(span.lines),
            )
            new_start = new_end = span.new_start
        else:
            old_start = old_end = span.old_start
            new_start, new_end = (
                span.new_start,
                span.new_start + len(span.lines),
            )

        if current is not None and equal_run <= merge_gap:
            current.old_end = max(current.old_end, old_end)
            current.new_end = max(current.new_end, new_end)
        else:
            if current is not None:
                regions.append(current)
            current = _Region(old_start, old_end, new_start, new_end)
        equal_run = 0

    if current is not None:
        regions.append(current)
    return regions
