"""Core helpers shared by the MCP server."""

from .async_utils import init_engine_lock, run_exclusive, run_sync

__all__ = ["init_engine_lock", "run_exclusive", "run_sync"]
