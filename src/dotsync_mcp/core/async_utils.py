"""Async utilities for bridging blocking engine calls to async MCP handlers."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Serialises access to the engine, initialized at server startup
_engine_lock: asyncio.Lock | None = None


def init_engine_lock() -> None:
    """Initialize the engine lock. Call once at server startup."""
    global _engine_lock
    _engine_lock = asyncio.Lock()
    logger.info("Engine lock initialized")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        # In MCP tool handler:
        inventory = await run_sync(engine.scan, ["zsh"])
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_exclusive(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool, one call at a time.

    The state store and merge resolver are single-owner objects; every
    handler that touches them goes through here.  Falls back to
    ``run_sync`` if the lock was not initialized.
    """
    if _engine_lock is None:
        return await asyncio.to_thread(func, *args, **kwargs)
    async with _engine_lock:
        return await asyncio.to_thread(func, *args, **kwargs)
