"""
Fire-and-forget background work.

Side effects that must never block or fail a request (API key last-used updates,
webhook dispatch) are submitted here instead of being left as bare unawaited calls.
Each task is referenced until it finishes, and its exception is logged and discarded.
"""
import asyncio
import logging
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)

# Strong references so the event loop cannot garbage-collect running tasks
_background_tasks: set[asyncio.Task] = set()


async def _guarded(awaitable: Awaitable, name: str) -> None:
    try:
        await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error("Background task %s failed: %s", name, str(e), exc_info=True)


def spawn(awaitable: Awaitable, name: str = "background") -> asyncio.Task:
    """Run an awaitable detached from the caller. Never raises into the caller."""
    task = asyncio.create_task(_guarded(awaitable, name), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_count() -> int:
    return len(_background_tasks)


async def drain(timeout: Optional[float] = None) -> int:
    """
    Wait for in-flight background tasks (shutdown, tests).
    Returns the number of tasks still pending after the timeout.
    """
    if not _background_tasks:
        return 0
    done, pending = await asyncio.wait(list(_background_tasks), timeout=timeout)
    return len(pending)


async def cancel_all() -> None:
    """Cancel whatever is still running. Used at shutdown after drain()."""
    tasks = list(_background_tasks)
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
