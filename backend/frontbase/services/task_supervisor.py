"""In-process background tasks whose failures get logged instead of lost."""

import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


class TaskSupervisor:
    def __init__(self):
        # The event loop only keeps weak references to tasks.
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, name: str, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Started background task %s", name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task %s failed", task.get_name(), exc_info=(type(exc), exc, exc.__traceback__)
            )

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def wait_idle(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, has finished."""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
