"""Tracking for fire-and-forget background work.

Syncs and trigger callbacks run as asyncio tasks that the send flow never
awaits. Tasks are held here so they are not garbage-collected mid-flight
and so callers (tests, shutdown) can wait for them.
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """A set of in-flight asyncio tasks with failure logging."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, work: Awaitable[Any] | Any, name: str) -> asyncio.Task[Any] | None:
        """Schedule an awaitable; plain return values are ignored.

        Args:
            work: Result of calling a sync or async callback.
            name: Task name used in failure logs.

        Returns:
            The created task, or None when ``work`` was not awaitable.
        """
        if not inspect.isawaitable(work):
            return None
        task = asyncio.ensure_future(work)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Background task %s failed: %s", task.get_name(), exc)

    async def drain(self) -> None:
        """Wait until every scheduled task (and any they spawn) finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel and await all in-flight tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning("Error while cancelling %s: %s", task.get_name(), e)
