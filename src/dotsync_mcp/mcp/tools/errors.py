"""Error response builders for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention.
"""

import mcp.types as types

from ...reconcile.errors import (
    BinaryFileError,
    HashMismatchError,
    IdenticalFilesError,
    InvalidHunkIndexError,
    NoSuchSessionError,
    NotFullyResolvedError,
    ReconcileError,
    StaleSessionError,
)


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, validation_error, not_resolved,
            binary_file, stale_session, hash_mismatch, server_error, ...)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "No merge session open for 'zsh/.zshrc'", "Open one with merge_open.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


def translate_reconcile_error(error: ReconcileError) -> types.CallToolResult:
    """Translate a reconciliation error to a structured error response."""
    message = str(error)

    match error:
        case InvalidHunkIndexError():
            return build_error_response(
                "validation_error",
                message,
                f"Use merge_show to list hunks; valid indexes are 0-{max(error.total - 1, 0)}.",
            )
        case NotFullyResolvedError():
            return build_error_response(
                "not_resolved",
                message,
                "Resolve the remaining hunks with merge_resolve, then retry merge_commit.",
            )
        case NoSuchSessionError():
            return build_error_response(
                "not_found",
                message,
                "Open a session with merge_open(item, rel_path) first.",
            )
        case IdenticalFilesError():
            return build_error_response(
                "no_changes",
                message,
                "Nothing to merge. Run dotsync_scan to see which files conflict.",
            )
        case BinaryFileError():
            return build_error_response(
                "binary_file",
                message,
                "Use dotsync_sync with direction 'push' or 'pull' to overwrite the whole file.",
            )
        case StaleSessionError():
            return build_error_response(
                "stale_session",
                message,
                "Cancel with merge_cancel and open the merge again.",
            )
        case HashMismatchError():
            return build_error_response(
                "hash_mismatch",
                message,
                "Another process may be writing the file. Check it, then retry merge_commit.",
            )
        case _:
            return build_error_response(
                "reconcile_error",
                message,
                "Run dotsync_scan to refresh the inventory and retry.",
            )
