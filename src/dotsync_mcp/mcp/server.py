"""MCP Server for dotfiles reconciliation using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents scan tracked config files, sync safe changes, and resolve
conflicts hunk by hunk.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..reconcile.engine import ReconcileEngine
from .lifespan import server_lifespan
from .tools import (
    ALL_SPECS,
    READ_ONLY_PERMISSIONS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("dotsync-mcp")

# Global engine instance (initialized in lifespan)
_engine: ReconcileEngine | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    engine: ReconcileEngine, args: dict
) -> types.CallToolResult:
    """Handle ping tool -- report liveness and the repository in use."""
    repository = engine.repository_root
    text = f"dotsync MCP server {__version__} running. Repository: {repository}"
    if not repository.is_dir():
        text += " (not found; create it or set DOTSYNC_REPOSITORY)"
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "version": __version__,
            "repository": str(repository),
            "repository_exists": repository.is_dir(),
        },
    )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test dotsync MCP server liveness and return the repository path",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_engine() -> ReconcileEngine:
    """Get the global ReconcileEngine instance.

    Raises:
        RuntimeError: If engine is not initialized
    """
    if _engine is None:
        raise RuntimeError(
            "ReconcileEngine not initialized. Server lifespan not started."
        )
    return _engine


def set_engine(engine: ReconcileEngine | None) -> None:
    """Set the global ReconcileEngine instance, or None to clear."""
    global _engine
    _engine = engine


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available tools.

    Returns all registered (and permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    engine = get_engine()
    try:
        return await get_registry().call_tool(name, arguments, engine)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(
    permissions_file: str | None = None, read_only: bool = False
) -> ToolRegistry:
    """Build the ToolRegistry, filtered by permissions file or read-only mode.

    A permissions file takes precedence over ``read_only``.
    """
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )
    elif read_only:
        allowed_permissions = READ_ONLY_PERMISSIONS

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    Sets up logging for MCP mode (file only, never stdout), builds the
    engine via the lifespan manager, and starts the server with stdio
    transport for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override
            (repository, state_dir, backup_dir, debug, log_file,
            permissions_file, read_only)
    """
    overrides = dict(config_overrides or {})
    log_file = overrides.pop("log_file", None)
    permissions_file = overrides.pop("permissions_file", None)
    read_only = overrides.pop("read_only", False)

    # Must run before stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp", debug=overrides.get("debug", False), log_file=log_file
    )

    registry = build_registry(permissions_file, read_only)
    if permissions_file or read_only:
        source = (
            f"Permissions file: {permissions_file}"
            if permissions_file
            else "Read-only mode"
        )
        print(
            f"{source} ({registry.tool_count()} of {len(ALL_SPECS) + 1} tools enabled)",
            file=sys.stderr,
        )

    set_registry(registry)

    # set_engine() is called here rather than in the lifespan so that
    # running this file as __main__ does not update a second module copy.
    async with server_lifespan(config_overrides=overrides or None) as ctx:
        set_engine(ctx["engine"])
        try:
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="dotsync-mcp",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(read_stream, write_stream, init_options)
        finally:
            set_engine(None)
            set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="dotsync MCP Server - reconcile local config files with a dotfiles repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or .dotsync/config.yml)
  dotsync-mcp

  # Use a different repository
  dotsync-mcp --repository ~/src/dotfiles

  # Scan and report only, never write files
  dotsync-mcp --read-only

  # Write a commented starter config and exit
  dotsync-mcp --init-config

  # Restrict tools with a permissions file
  dotsync-mcp --permissions-file ~/.config/dotsync/merge-only.permissions

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--repository",
        help="Dotfiles repository root (takes precedence over DOTSYNC_REPOSITORY and config files)",
    )
    parser.add_argument(
        "--state-dir",
        help="Directory holding the sync state file (overrides DOTSYNC_STATE_DIR)",
    )
    parser.add_argument(
        "--backup-dir",
        help="Directory for backups taken before pulls (overrides DOTSYNC_BACKUP_DIR)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--read-only",
        action="store_true",
        help="Only expose tools that never write files (scan, status, merge preview)",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (SYNC_VIEW, SYNC_WRITE, MERGE_WRITE), "
        "# for comments. Takes precedence over --read-only.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Create a starter config file if none exists, print its path, and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"dotsync-mcp version {__version__}",
    )

    args = parser.parse_args()

    if args.init_config:
        print(ensure_config(), file=sys.stderr)
        return

    # Build config overrides dict from CLI args
    config_overrides: dict = {}
    if args.repository:
        config_overrides["repository"] = args.repository
    if args.state_dir:
        config_overrides["state_dir"] = args.state_dir
    if args.backup_dir:
        config_overrides["backup_dir"] = args.backup_dir
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.read_only:
        config_overrides["read_only"] = True
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(main(config_overrides=config_overrides or None))
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
