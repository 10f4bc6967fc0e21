"""
Async Hygiene Tools
Provides supervised task management and timeouts for sentries, feeds and
delivery tasks.
"""

import asyncio
import logging
from typing import Any, Awaitable, Coroutine, Dict, TypeVar

logger = logging.getLogger(__name__)

# Global registry for supervised tasks
_supervised_tasks: Dict[str, asyncio.Task] = {}

T = TypeVar('T')

class AsyncTimeoutError(Exception):
    """Raised when an async operation times out."""
    pass

def create_supervised_task(
    coro: Coroutine[Any, Any, T],
    *,
    name: str
) -> asyncio.Task[T]:
    """
    Create a supervised task that will be cancelled on shutdown.

    The task is removed from the registry once it finishes, so a name can be
    reused by a later task (e.g. a sentry restarted for the same key).

    Args:
        coro: The coroutine to run
        name: Unique name for the task (used for tracking)

    Returns:
        The created task

    Raises:
        ValueError: If a running task with the same name already exists
    """
    existing = _supervised_tasks.get(name)
    if existing is not None and not existing.done():
        coro.close()
        raise ValueError(f"Task '{name}' already exists")

    async def _supervised_wrapper():
        try:
            return await coro
        except asyncio.CancelledError:
            logger.info(f"[async_tools] Task '{name}' cancelled")
            raise
        except Exception as e:
            logger.error(f"[async_tools] Task '{name}' failed: {e}")
            raise

    task = asyncio.create_task(_supervised_wrapper(), name=name)
    _supervised_tasks[name] = task

    def _unregister(done: asyncio.Task) -> None:
        if _supervised_tasks.get(name) is done:
            del _supervised_tasks[name]

    task.add_done_callback(_unregister)
    return task

async def timeout(awaitable: Awaitable[T], seconds: float) -> T:
    """
    Add a timeout to an awaitable.

    Args:
        awaitable: The coroutine to timeout
        seconds: Timeout in seconds

    Returns:
        The result of the awaitable

    Raises:
        AsyncTimeoutError: If the operation times out
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        raise AsyncTimeoutError(f"Operation timed out after {seconds}s")

async def shutdown_supervised_tasks():
    """Cancel all supervised tasks and wait for them to complete."""
    if not _supervised_tasks:
        return

    logger.info(f"[async_tools] Shutting down {len(_supervised_tasks)} supervised tasks")

    tasks = list(_supervised_tasks.values())
    for task in tasks:
        if not task.done():
            task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)

    _supervised_tasks.clear()
    logger.info("[async_tools] All supervised tasks shut down")

def get_supervised_tasks() -> Dict[str, asyncio.Task]:
    """Get the current supervised tasks registry."""
    return _supervised_tasks.copy()
