"""
Background writes

Cache and metadata persistence must not hold up the response. Work is
spawned as detached asyncio tasks whose failures are only logged.
"""

import asyncio
from typing import Awaitable, Set

from app.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundTasks:
    def __init__(self):
        # Strong references so pending tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, name: str = "background") -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, name))
        return task

    def _finished(self, task: asyncio.Task, name: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {name} failed: {exc}", exc_info=exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned task, used on shutdown and in tests"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
