"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config, to_runtime_config
from ..core.async_utils import init_engine_lock, run_sync
from ..reconcile.engine import ReconcileEngine
from ..reconcile.scanner import InstalledPackageCache

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (as fallback values)
    - Merge all sources: CLI > env vars > .env > YAML > defaults
    - Build the ReconcileEngine and load the persisted sync state
    - Start installed-package detection in the background

    On shutdown:
    - Log shutdown message (sessions are in-memory and simply dropped)

    Args:
        config_overrides: Optional dict with config values from CLI
            (repository, state_dir, backup_dir, debug)

    Yields:
        Dict with 'engine' key containing the initialized ReconcileEngine

    Raises:
        RuntimeError: If configuration is invalid or the state file cannot be read.
    """
    logger.info("MCP server starting...")
    _stderr_print("dotsync MCP Server starting...")

    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present; an empty dict gives zero-config defaults
        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        # 3. Fold everything into the runtime Config
        overrides = config_overrides or {}
        config = to_runtime_config(unified, cli_overrides=overrides)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info("Repository: %s", config.repository)
        _stderr_print(f"  Repository: {config.repository}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Check DOTSYNC_REPOSITORY and the config file.")
        raise RuntimeError(
            f"Configuration error: {e}. Check DOTSYNC_REPOSITORY and the config file."
        ) from e

    package_cache = InstalledPackageCache() if config.detect_packages else None

    try:
        engine = ReconcileEngine.from_config(config, package_cache=package_cache)
        await run_sync(engine.load)
    except Exception as e:
        logger.error("Failed to load sync state: %s", e)
        _stderr_print("ERROR: Could not load sync state.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Failed to load sync state from {config.state_path}: {e}"
        ) from e

    if package_cache is not None:
        package_cache.start()
    init_engine_lock()

    _stderr_print(f"  State file: {config.state_path}")
    _stderr_print(f"  Tracked files: {len(engine.state)}")
    _stderr_print(f"  Items: {', '.join(item.id for item in engine.items)}")
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"engine": engine}

    logger.info("MCP server shutting down")
    open_sessions = engine.resolver.sessions()
    if open_sessions:
        logger.warning(
            "Discarding %d open merge sessions: %s",
            len(open_sessions),
            ", ".join(s.key for s in open_sessions),
        )
    _stderr_print("dotsync MCP Server shutting down.")
