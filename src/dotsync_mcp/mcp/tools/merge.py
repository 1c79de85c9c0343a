"""MCP tool handlers for hunk-level conflict resolution.

Defines five tools:

- ``merge_open`` -- open a merge session for a conflicted file.
- ``merge_show`` -- show a session with hunk previews.
- ``merge_resolve`` -- resolve one hunk, or every hunk at once.
- ``merge_commit`` -- write the merged content and record the new baseline.
- ``merge_cancel`` -- discard a session without writing anything.

Sessions live in server memory; they do not survive a restart.
"""

from __future__ import annotations

import logging
from typing import Any

import mcp.types as types

from ...core.async_utils import run_exclusive
from ...file_handler import validate_file_path
from ...reconcile.engine import ReconcileEngine
from ...reconcile.models import HunkResolution
from ...reconcile.reporter import format_session, session_to_json
from .errors import build_error_response
from .registry import MERGE_WRITE, SYNC_VIEW, ToolSpec

logger = logging.getLogger(__name__)

_RESOLUTIONS = ("keep_local", "use_repository", "manual", "all_local", "all_repository")

_KEY_PROPERTY = {
    "type": "string",
    "description": "Session key in the form 'item_id/rel_path'",
}


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


MERGE_TOOLS: list[types.Tool] = [
    types.Tool(
        name="merge_open",
        description=(
            "Open a merge session for a file whose local and repository "
            "copies both changed. Identify the file by item + rel_path, or "
            "by its absolute file_path. Returns the hunks to resolve."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "item": {
                    "type": "string",
                    "description": "Item id (e.g. 'zsh')",
                },
                "rel_path": {
                    "type": "string",
                    "description": "Path relative to the item (e.g. '.zshrc')",
                },
                "file_path": {
                    "type": "string",
                    "description": "Absolute local or repository path of the file",
                },
                "max_lines": {
                    "type": "integer",
                    "default": 10,
                    "minimum": 1,
                    "description": "Lines shown per side in each hunk preview",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="merge_show",
        description="Show an open merge session and its hunks.",
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "key": _KEY_PROPERTY,
                "max_lines": {
                    "type": "integer",
                    "default": 10,
                    "minimum": 1,
                    "description": "Lines shown per side in each hunk preview",
                },
                "include_merged": {
                    "type": "boolean",
                    "default": False,
                    "description": "Append the merged content (requires every hunk resolved)",
                },
            },
            "required": ["key"],
        },
    ),
    types.Tool(
        name="merge_resolve",
        description=(
            "Resolve a hunk: keep_local, use_repository, or manual (with "
            "content). all_local / all_repository resolve every hunk at once."
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
                "key": _KEY_PROPERTY,
                "resolution": {
                    "type": "string",
                    "enum": list(_RESOLUTIONS),
                    "description": "How to resolve the hunk(s)",
                },
                "index": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Hunk index (default: the next pending hunk)",
                },
                "content": {
                    "type": "string",
                    "description": "Replacement text for manual resolution",
                },
            },
            "required": ["key", "resolution"],
        },
    ),
    types.Tool(
        name="merge_commit",
        description=(
            "Write the merged content to the local file and record it as "
            "the new baseline. By default the merged file is also copied to "
            "the repository; with push=false it is left for the next "
            "dotsync_sync to push."
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
                "key": _KEY_PROPERTY,
                "push": {
                    "type": "boolean",
                    "default": True,
                    "description": "Copy the merged file to the repository (default true)",
                },
            },
            "required": ["key"],
        },
    ),
    types.Tool(
        name="merge_cancel",
        description="Discard an open merge session without writing anything.",
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=False,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {"key": _KEY_PROPERTY},
            "required": ["key"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Tool handler
# ---------------------------------------------------------------------------


async def handle_merge_tool(
    name: str,
    arguments: dict[str, Any] | None,
    engine: ReconcileEngine,
) -> types.CallToolResult:
    """Dispatch and execute a merge tool.

    Reconciliation errors are not caught here; ``ToolRegistry.call_tool``
    translates them into structured responses.
    """
    args = arguments or {}

    try:
        match name:
            case "merge_open":
                return await _handle_open(engine, args)
            case "merge_show":
                return await _handle_show(engine, args)
            case "merge_resolve":
                return await _handle_resolve(engine, args)
            case "merge_commit":
                return await _handle_commit(engine, args)
            case "merge_cancel":
                return await _handle_cancel(engine, args)
            case _:
                raise ValueError(f"Unknown merge tool: {name}")

    except ValueError as exc:
        return build_error_response(
            "validation_error",
            str(exc),
            "Check parameter values and retry.",
        )


# ---------------------------------------------------------------------------
# Individual handlers
# ---------------------------------------------------------------------------


def _require_key(args: dict[str, Any]) -> str:
    key = args.get("key")
    if not key:
        raise ValueError("key is required")
    return key


def _session_result(session, max_lines: int = 10, extra: str = "") -> types.CallToolResult:
    text = format_session(session, max_lines=max_lines)
    if extra:
        text = f"{extra}\n\n{text}"
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent=session_to_json(session),
    )


async def _handle_open(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``merge_open`` tool."""
    item_id = args.get("item")
    rel_path = args.get("rel_path")
    file_path = args.get("file_path")

    if file_path:
        validate_file_path(file_path)
        item_id, rel_path = engine.locate(file_path)
    elif not (item_id and rel_path):
        raise ValueError("Provide either item and rel_path, or file_path")

    session = await run_exclusive(engine.open_merge, item_id, rel_path)
    logger.info("Opened merge %s with %d hunks", session.key, session.total_hunks)
    return _session_result(session, max_lines=int(args.get("max_lines", 10)))


async def _handle_show(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``merge_show`` tool."""
    key = _require_key(args)
    session = await run_exclusive(engine.get_merge, key)
    result = _session_result(session, max_lines=int(args.get("max_lines", 10)))

    if args.get("include_merged"):
        merged = session.merged_content()
        result.content.append(
            types.TextContent(type="text", text=f"Merged content:\n\n{merged}")
        )
    return result


async def _handle_resolve(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``merge_resolve`` tool."""
    key = _require_key(args)
    resolution = args.get("resolution")
    if resolution not in _RESOLUTIONS:
        raise ValueError(
            f"Invalid resolution '{resolution}': must be one of {', '.join(_RESOLUTIONS)}"
        )

    if resolution == "all_local":
        session = await run_exclusive(
            engine.resolve_all, key, HunkResolution.KEEP_LOCAL
        )
        return _session_result(session, extra="Resolved every hunk: keep local")
    if resolution == "all_repository":
        session = await run_exclusive(
            engine.resolve_all, key, HunkResolution.USE_REPOSITORY
        )
        return _session_result(session, extra="Resolved every hunk: use repository")

    index = args.get("index")
    if index is None:
        index = (await run_exclusive(engine.get_merge, key)).current_hunk

    session = await run_exclusive(
        engine.resolve_hunk,
        key,
        int(index),
        HunkResolution(resolution),
        args.get("content"),
    )
    return _session_result(session, extra=f"Resolved hunk {index}: {resolution}")


async def _handle_commit(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``merge_commit`` tool."""
    key = _require_key(args)
    push = bool(args.get("push", True))

    session = await run_exclusive(engine.get_merge, key)
    fingerprint = await run_exclusive(engine.commit_merge, key, push)

    lines = [
        f"Committed merge for {key}",
        f"  Wrote:       {session.local_path}",
        f"  Fingerprint: {fingerprint}",
    ]
    if push:
        lines.append(f"  Pushed to:   {session.repository_path}")

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent={
            "key": key,
            "local_path": str(session.local_path),
            "fingerprint": fingerprint,
            "pushed": push,
        },
    )


async def _handle_cancel(
    engine: ReconcileEngine, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``merge_cancel`` tool."""
    key = _require_key(args)
    await run_exclusive(engine.cancel_merge, key)
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=f"Cancelled merge for {key}")],
        structuredContent={"key": key, "cancelled": True},
    )


# ToolSpec list for registry-based dispatch
MERGE_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=MERGE_TOOLS[0],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_open,
    ),
    ToolSpec(
        tool=MERGE_TOOLS[1],
        permissions=frozenset({SYNC_VIEW}),
        handler=_handle_show,
    ),
    ToolSpec(
        tool=MERGE_TOOLS[2],
        permissions=frozenset({MERGE_WRITE}),
        handler=_handle_resolve,
    ),
    ToolSpec(
        tool=MERGE_TOOLS[3],
        permissions=frozenset({MERGE_WRITE}),
        handler=_handle_commit,
    ),
    ToolSpec(
        tool=MERGE_TOOLS[4],
        permissions=frozenset({MERGE_WRITE}),
        handler=_handle_cancel,
    ),
]
