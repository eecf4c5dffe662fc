"""
Detached background tasks.

Fire-and-forget work (e.g. storing extracted listings after the response
has already been sent) runs as an asyncio task that nobody awaits. Its
errors go to the log, never back to the request that spawned it.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)

# Strong references so the event loop does not garbage-collect running tasks
_background_tasks: Set[asyncio.Task] = set()


def _on_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        logger.warning(f"Detached task {task.get_name()} was cancelled")
        return
    error = task.exception()
    if error is not None:
        logger.error(
            f"Detached task {task.get_name()} failed: {error}",
            exc_info=(type(error), error, error.__traceback__),
        )


def spawn_detached(coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
    """Schedule coro without joining it. Must be called from a running loop."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _background_tasks.add(task)
    task.add_done_callback(_on_done)
    return task


def pending_tasks() -> int:
    """Number of detached tasks still running."""
    return len(_background_tasks)


async def drain_detached(timeout: float = 10.0) -> None:
    """Wait for outstanding detached tasks (used on shutdown)."""
    if not _background_tasks:
        return
    done, pending = await asyncio.wait(list(_background_tasks), timeout=timeout)
    if pending:
        logger.warning(f"{len(pending)} detached task(s) still running at shutdown, cancelling")
        for task in pending:
            task.cancel()
