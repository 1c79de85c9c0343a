"""MCP tool handlers for scanning and synchronisation.

Defines four tools:

- ``dotsync_scan`` -- scan tracked items and classify every file.
- ``dotsync_status`` -- show the persisted sync state summary.
- ``dotsync_sync`` -- apply safe pushes and pulls (with optional dry-run).
- ``dotsync_prune`` -- drop state for files gone from both sides.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...core.async_utils import run_exclusive
from ...reconcile.engine import DIRECTIONS, ReconcileEngine
from ...reconcile.models import ConflictOutcome
from ...reconcile.reporter import (
    format_dry_run_preview,
    format_inventory_report,
    format_sync_report,
    inventory_to_json,
    report_to_json,
)
from .errors import build_error_response
from .registry import SYNC_VIEW, SYNC_WRITE, ToolSpec

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


RECONCILE_TOOLS: list[types.Tool] = [
    types.Tool(
        name="dotsync_scan",
        description=(
            "Scan tracked applications and classify every config file as "
            "synced, modified on one side, new, deleted, or in conflict."
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
                    "description": "Only scan this item (e.g. 'zsh')",
                },
                "outcome": {
                    "type": "string",
                    "enum": [o.value for o in ConflictOutcome],
                    "description": "Only report files with this outcome",
                },
                "show_unchanged": {
                    "type": "boolean",
                    "default": False,
                    "description": "List synced files individually",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="dotsync_status",
        description=(
            "Show sync state: repository, last sync time, number of tracked "
            "files, and open merge sessions."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="dotsync_sync",
        description=(
            "Push locally changed files to the repository and pull "
            "repository changes locally (backing up local copies first). "
            "Conflicts and deletions are reported, never applied."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "direction": {
                    "type": "string",
                    "enum": list(DIRECTIONS),
                    "default": "bidirectional",
                    "description": "Which way changes may flow",
                },
                "dry_run": {
                    "type": "boolean",
                    "default": False,
                    "description": "Preview changes without applying them",
                },
                "item": {
                    "type": "string",
                    "description": "Only sync this item",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="dotsync_prune",
        description=(
            "Scan every item and drop sync state for files that no longer "
            "exist on either side. Nothing is pruned when the scan skipped "
            "any path."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
]


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_reconcile_tool(
    name: str,
    arguments: dict[str, Any] | None,
    engine: ReconcileEngine,
) -> types.CallToolResult:
    """Dispatch and execute a scan/sync tool.

    Args:
        name: Tool name (``dotsync_scan``, ``dotsync_status``, ``dotsync_sync``,
            ``dotsync_prune``).
        arguments: Tool arguments dict.
        engine: The server's reconciliation engine.

    Returns:
        ``CallToolResult`` with tool output or error details.
    """
    args = arguments or {}

    try:
        match name:
            case "dotsync_scan":
                return await _handle_scan(engine, args)
            case "dotsync_status":
                return await _handle_status(engine, args)
            case "dotsync_prune":
                return await _handle_prune(engine, args)
            case "dotsync_sync":
                return await _handle_sync(engine, args)
            case _:
                raise ValueError(f"Unknown reconcile tool: {name}")

    except ValueError as exc:
        return build_error_response(
            "validation_error",
            str(exc),
            "Check parameter values and retry.",
        )
    except Exception as exc:
        logger.exception("Reconcile tool error: %s", exc)
        return build_error_response(
            "server_error",
            str(exc),
            "Check the repository path and item configuration.",
        )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _item_ids(args: dict[str, Any]) -> list[str] | None:
    item = args.get("item")
    return [item] if item else None


async def _handle_scan(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``dotsync_scan`` tool."""
    outcome_arg = args.get("outcome")
    outcome = ConflictOutcome(outcome_arg) if outcome_arg else None

    inventory = await run_exclusive(engine.scan, _item_ids(args))
    if outcome is not None:
        inventory = inventory.model_copy(
            update={"records": inventory.by_outcome(outcome)}
        )

    text = format_inventory_report(
        inventory,
        show_unchanged=bool(args.get("show_unchanged", False))
        or outcome == ConflictOutcome.UNCHANGED,
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=inventory_to_json(inventory),
    )


async def _handle_status(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``dotsync_status`` tool."""
    status = await run_exclusive(engine.status)

    lines = [
        "Sync status",
        f"  Repository:    {status['repository']}",
        f"  State file:    {status['state_path']}",
        f"  Algorithm:     {status['algorithm']}",
        f"  Last sync:     {status['last_sync'] or 'never'}",
        f"  Tracked files: {status['tracked_entries']}",
        f"  Items:         {', '.join(status['items']) or '(none)'}",
    ]
    if status["open_sessions"]:
        lines.append(
            f"  Open merges:   {', '.join(status['open_sessions'])}"
        )

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=status,
    )


async def _handle_sync(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``dotsync_sync`` tool."""
    direction = args.get("direction", "bidirectional")
    dry_run = bool(args.get("dry_run", False))

    report = await run_exclusive(
        engine.sync,
        direction=direction,
        dry_run=dry_run,
        item_ids=_item_ids(args),
    )

    text = format_dry_run_preview(report) if dry_run else format_sync_report(report)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=report_to_json(report),
    )


async def _handle_prune(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``dotsync_prune`` tool."""
    inventory = await run_exclusive(engine.scan)
    removed = await run_exclusive(engine.prune_state, inventory)

    if not inventory.complete:
        text = (
            f"Scan skipped {len(inventory.errors)} paths; state left untouched."
        )
    else:
        text = f"Pruned {removed} stale state entries ({len(engine.state)} remain)."
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "removed": removed,
            "complete": inventory.complete,
            "tracked_entries": len(engine.state),
        },
    )


# ToolSpec list for registry-based dispatch
RECONCILE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=RECONCILE_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_scan,
    ),
    ToolSpec(
        tool=RECONCILE_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_status,
    ),
    ToolSpec(
        tool=RECONCILE_TOOLS[2],
        permissions=frozenset({SYNC_WRITE}),
        handler=_handle_sync,
    ),
    ToolSpec(
        tool=RECONCILE_TOOLS[3],
        permissions=frozenset({SYNC_WRITE}),
        handler=_handle_prune,
    ),
]
