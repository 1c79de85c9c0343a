"""MCP tool handlers for dotfiles reconciliation.

This package contains MCP tool implementations that wrap the
ReconcileEngine with async handlers, text reports, and structured error
responses.
"""

from .backup import BACKUP_SPECS, BACKUP_TOOLS
from .errors import build_error_response, translate_reconcile_error
from .merge import MERGE_SPECS, MERGE_TOOLS, handle_merge_tool
from .reconcile import (
    RECONCILE_SPECS,
    RECONCILE_TOOLS,
    handle_reconcile_tool,
)
from .registry import (
    KNOWN_PERMISSIONS,
    MERGE_WRITE,
    READ_ONLY_PERMISSIONS,
    SYNC_VIEW,
    SYNC_WRITE,
    ToolRegistry,
    ToolSpec,
    load_permissions_file,
)

ALL_SPECS: list[ToolSpec] = RECONCILE_SPECS + MERGE_SPECS + BACKUP_SPECS

__all__ = [
    "build_error_response",
    "translate_reconcile_error",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    "KNOWN_PERMISSIONS",
    "READ_ONLY_PERMISSIONS",
    "SYNC_VIEW",
    "SYNC_WRITE",
    "MERGE_WRITE",
    # Spec lists
    "ALL_SPECS",
    "RECONCILE_SPECS",
    "MERGE_SPECS",
    "BACKUP_SPECS",
    # Tool lists
    "RECONCILE_TOOLS",
    "handle_reconcile_tool",
    "MERGE_TOOLS",
    "handle_merge_tool",
    "BACKUP_TOOLS",
]
