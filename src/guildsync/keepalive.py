"""
Keep-alive registry for background syncs.

``BackgroundTasks`` is the ``register(task)`` callable handed to
:meth:`SyncOrchestrator.start_background_sync`.  It schedules the
coroutine on the running loop and holds a strong reference until the task
settles; the event loop itself only keeps weak ones.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Set

logger = logging.getLogger("guildsync.keepalive")


class BackgroundTasks:
    def __init__(self, name: str = "guildsync-background") -> None:
        self._name = name
        self._tasks: Set[asyncio.Task[Any]] = set()

    def __call__(self, work: Awaitable[Any]) -> None:
        self.register(work)

    def __len__(self) -> int:
        return len(self._tasks)

    def register(self, work: Awaitable[Any]) -> asyncio.Task[Any]:
        """Schedule *work* and keep it alive until it finishes."""
        task = asyncio.ensure_future(work)
        task.set_name(f"{self._name}-{len(self._tasks) + 1}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for outstanding tasks; cancel whatever is left after *timeout*.

        Returns:
            Number of tasks that were still pending when ``drain`` was called.
        """
        pending = set(self._tasks)
        if not pending:
            return 0
        logger.info("Waiting for %d background task(s)", len(pending))
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.gather(*still_pending, return_exceptions=True)
            logger.warning("Cancelled %d background task(s) on drain", len(still_pending))
        return len(pending)
