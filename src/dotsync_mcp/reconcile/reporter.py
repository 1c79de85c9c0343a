"""Inventory, sync and merge report formatting.

Provides human-readable and machine-readable output:

- ``describe_outcome`` -- the single mapping from an outcome to its label,
  icon, color and suggested action.
- ``format_inventory_report`` -- scan results grouped by outcome.
- ``format_sync_report`` / ``format_dry_run_preview`` -- sync runs.
- ``format_session`` -- a merge session with hunk previews.
- ``inventory_to_json`` / ``report_to_json`` / ``session_to_json`` --
  structured dicts for MCP tool output.
- ``format_backups`` / ``backups_to_json`` / ``format_backup_comparison``
  -- local backups and what restoring one would change.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .hasher import quick_hash
from .merge import format_hunk_preview
from .models import ConflictOutcome, SyncAction

if TYPE_CHECKING:
    from .merge import MergeSession
    from .models import (
        BackupComparison,
        BackupEntry,
        FileRecord,
        ScanInventory,
        SyncReport,
    )


@dataclass(frozen=True)
class OutcomeDescriptor:
    """Display attributes of one ``ConflictOutcome``."""

    label: str
    icon: str
    color: str
    action: str


_DESCRIPTORS: dict[ConflictOutcome, OutcomeDescriptor] = {
    ConflictOutcome.UNCHANGED: OutcomeDescriptor("Synced", "✓", "green", "none"),
    ConflictOutcome.LOCAL_MODIFIED: OutcomeDescriptor(
        "Modified (push)", "●", "yellow", "push"
    ),
    ConflictOutcome.LOCAL_NEW: OutcomeDescriptor(
        "New (local)", "+", "cyan", "push"
    ),
    ConflictOutcome.REPOSITORY_MODIFIED: OutcomeDescriptor(
        "Outdated (pull)", "○", "blue", "pull"
    ),
    ConflictOutcome.REPOSITORY_NEW: OutcomeDescriptor(
        "New (repository)", "↓", "cyan", "pull"
    ),
    ConflictOutcome.BOTH_MODIFIED: OutcomeDescriptor(
        "CONFLICT", "⚡", "red", "merge"
    ),
    ConflictOutcome.LOCAL_DELETED: OutcomeDescriptor(
        "Deleted locally", "✗", "magenta", "review"
    ),
    ConflictOutcome.REPOSITORY_DELETED: OutcomeDescriptor(
        "Deleted in repository", "✗", "magenta", "review"
    ),
}

# Report order: what needs attention first.
_OUTCOME_ORDER = [
    ConflictOutcome.BOTH_MODIFIED,
    ConflictOutcome.LOCAL_MODIFIED,
    ConflictOutcome.LOCAL_NEW,
    ConflictOutcome.REPOSITORY_MODIFIED,
    ConflictOutcome.REPOSITORY_NEW,
    ConflictOutcome.LOCAL_DELETED,
    ConflictOutcome.REPOSITORY_DELETED,
    ConflictOutcome.UNCHANGED,
]


def describe_outcome(outcome: ConflictOutcome) -> OutcomeDescriptor:
    """Return the display descriptor for *outcome*."""
    return _DESCRIPTORS[outcome]


# ------------------------------------------------------------------
# Inventory
# ------------------------------------------------------------------


def _record_line(record: FileRecord) -> str:
    desc = describe_outcome(record.outcome)
    line = (
        f"  {desc.icon} {record.item_id}/{record.rel_path}  "
        f"[{quick_hash(record.local_fingerprint)} / "
        f"{quick_hash(record.repository_fingerprint)}]"
    )
    if record.skipped:
        line += "  (too large, not hashed)"
    return line


def format_inventory_report(
    inventory: ScanInventory, show_unchanged: bool = False
) -> str:
    """Format a scan inventory grouped by outcome.

    Directories are omitted; unchanged files are summarised by count
    unless *show_unchanged* is set.
    """
    files = [r for r in inventory.records if not r.is_dir]
    groups: dict[ConflictOutcome, list[FileRecord]] = defaultdict(list)
    for record in files:
        groups[record.outcome].append(record)

    lines = [f"Scanned {len(files)} files across {len(inventory.installed)} items"]
    if not inventory.complete:
        lines.append("WARNING: scan incomplete, some paths could not be read")
    lines.append("")

    for outcome in _OUTCOME_ORDER:
        records = groups.get(outcome)
        if not records:
            continue
        if outcome == ConflictOutcome.UNCHANGED and not show_unchanged:
            continue
        desc = describe_outcome(outcome)
        lines.append(f"{desc.label} ({len(records)}):")
        for record in sorted(records, key=lambda r: r.key):
            lines.append(_record_line(record))
        lines.append("")

    unchanged = len(groups.get(ConflictOutcome.UNCHANGED, []))
    if unchanged and not show_unchanged:
        lines.append(f"Synced: {unchanged} files")
        lines.append("")

    if inventory.errors:
        lines.append("Errors:")
        for location, message in inventory.errors:
            lines.append(f"  {location}: {message}")
        lines.append("")

    return "\n".join(lines).rstrip()


def inventory_to_json(inventory: ScanInventory) -> dict:
    """Convert an inventory to a structured dict for MCP output."""
    counts = {outcome.value: 0 for outcome in ConflictOutcome}
    records = []
    for r in inventory.records:
        if not r.is_dir:
            counts[r.outcome.value] += 1
        records.append(
            {
                "item_id": r.item_id,
                "rel_path": r.rel_path,
                "path": r.path,
                "repository_path": r.repository_path,
                "is_dir": r.is_dir,
                "outcome": r.outcome.value,
                "action": describe_outcome(r.outcome).action,
                "local_fingerprint": r.local_fingerprint,
                "repository_fingerprint": r.repository_fingerprint,
                "skipped": r.skipped,
            }
        )
    return {
        "complete": inventory.complete,
        "started_at": inventory.started_at,
        "completed_at": inventory.completed_at,
        "installed": inventory.installed,
        "counts": counts,
        "records": records,
        "errors": [
            {"location": loc, "message": msg} for loc, msg in inventory.errors
        ],
    }


# ------------------------------------------------------------------
# Sync report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a completed sync report as human-readable text.

    Sections are only included when they contain at least one result.
    """
    lines: list[str] = []

    header = f"Sync report ({report.direction})"
    if report.dry_run:
        header += " (DRY RUN)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} files: "
        f"{len(report.pushed)} pushed, {len(report.pulled)} pulled, "
        f"{len(report.conflicts)} conflicts, {len(report.errors)} errors"
    )
    lines.append("")

    succeeded = [r for r in report.results if r.success]
    sections = [
        ("Pushed to repository:", SyncAction.PUSH),
        ("Pulled from repository:", SyncAction.PULL),
        ("Conflicts (open a merge):", SyncAction.CONFLICT),
        ("Deleted locally (not propagated):", SyncAction.DELETE_REMOTE),
        ("Deleted in repository (not propagated):", SyncAction.DELETE_LOCAL),
    ]
    for title, action in sections:
        matching = [r for r in succeeded if r.action == action]
        if not matching:
            continue
        lines.append(title)
        for r in matching:
            line = f"  {r.item_id}/{r.rel_path}"
            if r.backup_path:
                line += f"  (backup: {r.backup_path})"
            lines.append(line)
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.item_id}/{r.rel_path}: {r.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Skipped: {len(report.skipped)} files")
        lines.append("")

    return "\n".join(lines).rstrip()


def format_dry_run_preview(report: SyncReport) -> str:
    """Format a dry-run preview grouped by action type."""
    lines = ["DRY RUN -- No changes will be made", f"Direction: {report.direction}", ""]

    groups: dict[SyncAction, list[str]] = defaultdict(list)
    for r in report.results:
        groups[r.action].append(f"{r.item_id}/{r.rel_path}")

    display_order = [
        SyncAction.PUSH,
        SyncAction.PULL,
        SyncAction.CONFLICT,
        SyncAction.DELETE_REMOTE,
        SyncAction.DELETE_LOCAL,
    ]
    for action in display_order:
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper().replace('_', ' ')}]")
        lines.extend(f"  {key}" for key in groups[action])
        lines.append("")

    skip_count = len(groups.get(SyncAction.SKIP, []))
    if skip_count:
        lines.append(f"Skipped: {skip_count} files")
        lines.append("")

    if not any(a != SyncAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    return "\n".join(lines).rstrip()


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for MCP output."""
    results_list = []
    for r in report.results:
        entry: dict = {
            "item_id": r.item_id,
            "rel_path": r.rel_path,
            "outcome": r.outcome.value if r.outcome else None,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        if r.backup_path:
            entry["backup_path"] = r.backup_path
        results_list.append(entry)

    return {
        "direction": report.direction,
        "dry_run": report.dry_run,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "pushed": len(report.pushed),
            "pulled": len(report.pulled),
            "conflicts": len(report.conflicts),
            "deletions": len(report.deletions),
            "errors": len(report.errors),
            "skipped": len(report.skipped),
        },
        "results": results_list,
    }


# ------------------------------------------------------------------
# Merge sessions
# ------------------------------------------------------------------


def format_session(session: MergeSession, max_lines: int = 10) -> str:
    """Format a merge session header followed by every hunk preview."""
    lines = [
        f"Merge: {session.key}",
        f"  Local:      {session.local_path}",
        f"  Repository: {session.repository_path}",
        f"  Resolved:   {session.resolved_hunks}/{session.total_hunks}",
    ]
    if not session.is_fully_resolved:
        lines.append(f"  Next hunk:  {session.current_hunk}")
    lines.append("")
    for hunk in session.hunks:
        lines.append(format_hunk_preview(hunk, max_lines=max_lines))
        lines.append("")
    return "\n".join(lines).rstrip()


def session_to_json(session: MergeSession) -> dict:
    return {
        "key": session.key,
        "item_id": session.item_id,
        "rel_path": session.rel_path,
        "local_path": str(session.local_path),
        "repository_path": str(session.repository_path),
        "total_hunks": session.total_hunks,
        "resolved_hunks": session.resolved_hunks,
        "is_fully_resolved": session.is_fully_resolved,
        "current_hunk": session.current_hunk,
        "hunks": [
            {
                "index": h.index,
                "local_start": h.local_start,
                "local_lines": len(h.local_lines),
                "repository_lines": len(h.repository_lines),
                "resolution": h.resolution.value,
            }
            for h in session.hunks
        ],
    }


# ------------------------------------------------------------------
# Backups
# ------------------------------------------------------------------


def format_backups(entries: list[BackupEntry]) -> str:
    """List backups grouped by snapshot, newest first."""
    if not entries:
        return "No backups found."

    lines = [f"Backups ({len(entries)} files)"]
    current = None
    for entry in entries:
        if entry.snapshot != current:
            current = entry.snapshot
            lines.append("")
            lines.append(f"{entry.snapshot}:")
        lines.append(f"  {entry.item_id}/{entry.rel_path}  ({entry.size} bytes)")
    return "\n".join(lines)


def backups_to_json(entries: list[BackupEntry]) -> dict:
    return {
        "count": len(entries),
        "backups": [entry.model_dump() for entry in entries],
    }


def format_backup_comparison(comparison: BackupComparison) -> str:
    """Describe what restoring a backup would change."""
    lines = [
        f"Backup:  {comparison.backup_path}",
        f"Local:   {comparison.local_path}"
        + ("" if comparison.local_exists else " (missing)"),
        "",
    ]
    if comparison.identical:
        lines.append("Backup matches the local file; nothing to restore.")
    elif comparison.binary:
        lines.append("Binary file differs from the local copy (no line diff).")
    else:
        lines.append(
            f"Restoring adds {comparison.lines_added} and removes "
            f"{comparison.lines_removed} lines:"
        )
        lines.append("")
        lines.append(comparison.diff.rstrip())
    return "\n".join(lines)
