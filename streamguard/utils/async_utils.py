"""
StreamGuard - Async Utilities
=============================

Helpers for background tasks and time-bounded awaits with proper error
logging, so failures in fire-and-forget work are never silent.

Usage:
    from streamguard.utils.async_utils import create_safe_task, with_timeout

    create_safe_task(self._sweep_loop(), "Moderation Sweep")
    result = await with_timeout(classifier.classify(text, user), timeout=5.0)
"""

import asyncio
from typing import Any, Coroutine, Optional, TypeVar

from streamguard.core.logger import logger

T = TypeVar("T")


# =============================================================================
# Timeouts
# =============================================================================

async def with_timeout(
    coro: Coroutine[Any, Any, T],
    timeout: float = 10.0,
    default: Optional[T] = None,
    name: str = "Operation",
) -> Optional[T]:
    """
    Run a coroutine with a timeout, returning default on timeout.

    Args:
        coro: Coroutine to run.
        timeout: Timeout in seconds.
        default: Value to return on timeout.
        name: Operation name for the log line.

    Returns:
        Result of coroutine or default on timeout.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} timed out after {timeout}s")
        return default


# =============================================================================
# Safe Background Tasks
# =============================================================================

def create_safe_task(
    coro: Coroutine[Any, Any, Any],
    name: str = "Background Task",
) -> asyncio.Task:
    """
    Create a background task with automatic error logging.

    Unlike raw asyncio.create_task(), this catches and logs any exceptions
    instead of letting them silently disappear.

    Args:
        coro: The coroutine to run as a background task.
        name: Name for logging purposes.

    Returns:
        The created asyncio.Task.
    """
    async def wrapped():
        try:
            await coro
        except asyncio.CancelledError:
            # Cancelled during shutdown
            raise
        except Exception as e:
            logger.error("Background Task Failed", [
                ("Task", name),
                ("Error Type", type(e).__name__),
                ("Error", str(e)[:200]),
            ])

    return asyncio.create_task(wrapped(), name=name)


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "with_timeout",
    "create_safe_task",
]
