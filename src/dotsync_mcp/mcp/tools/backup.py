"""MCP tool handlers for local backups.

Every pull backs up the local file it overwrites.  Defines three tools:

- ``backup_list`` -- list backups, newest snapshot first.
- ``backup_diff`` -- show what restoring a backup would change.
- ``backup_restore`` -- copy a backup over its local file.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...core.async_utils import run_exclusive
from ...reconcile.engine import ReconcileEngine
from ...reconcile.reporter import (
    backups_to_json,
    format_backup_comparison,
    format_backups,
)
from .registry import SYNC_VIEW, SYNC_WRITE, ToolSpec

logger = logging.getLogger(__name__)

_BACKUP_PATH_PROPERTY = {
    "type": "string",
    "description": (
        "Backup file, absolute or relative to the backup directory "
        "(as listed by backup_list)"
    ),
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


BACKUP_TOOLS: list[types.Tool] = [
    types.Tool(
        name="backup_list",
        description=(
            "List the local backups taken before pulls overwrote local "
            "files, newest first."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "item": {
                    "type": "string",
                    "description": "Only list backups of this item",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="backup_diff",
        description=(
            "Compare a backup with the current local file and show the "
            "unified diff a restore would apply."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"backup_path": _BACKUP_PATH_PROPERTY},
            "required": ["backup_path"],
        },
    ),
    types.Tool(
        name="backup_restore",
        description=(
            "Restore a backup over its local file. The current local file "
            "is backed up first. The restored file is pushed by the next "
            "dotsync_sync."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "backup_path": _BACKUP_PATH_PROPERTY,
                "backup_current": {
                    "type": "boolean",
                    "default": True,
                    "description": "Back up the current local file first",
                },
            },
            "required": ["backup_path"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _require_backup_path(args: dict[str, Any]) -> str:
    backup_path = args.get("backup_path")
    if not backup_path:
        raise ValueError("backup_path is required")
    return backup_path


async def _handle_list(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``backup_list`` tool."""
    item = args.get("item")
    if item:
        engine.get_item(item)
    entries = await run_exclusive(engine.list_backups, [item] if item else None)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_backups(entries))],
        structuredContent=backups_to_json(entries),
    )


async def _handle_diff(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``backup_diff`` tool."""
    comparison = await run_exclusive(
        engine.compare_backup, _require_backup_path(args)
    )
    return types.CallToolResult(
        content=[
            types.TextContent(type="text", text=format_backup_comparison(comparison))
        ],
        structuredContent=comparison.model_dump(),
    )


async def _handle_restore(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``backup_restore`` tool."""
    result = await run_exclusive(
        engine.restore_backup,
        _require_backup_path(args),
        bool(args.get("backup_current", True)),
    )

    lines = [
        f"Restored {result.item_id}/{result.rel_path}",
        f"  From:        {result.backup_path}",
        f"  To:          {result.local_path}",
        f"  Fingerprint: {result.fingerprint}",
    ]
    if result.previous_backup:
        lines.append(f"  Previous:    {result.previous_backup}")
    lines.append("Run dotsync_sync to push the restored file.")

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=result.model_dump(),
    )


# ToolSpec list for registry-based dispatch
BACKUP_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=BACKUP_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_list,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_diff,
    ),
    ToolSpec(
        tool=BACKUP_TOOLS[2],
        permissions=frozenset({SYNC_WRITE}),
        handler=_handle_restore,
    ),
]
