import asyncio
import logging
from typing import Coroutine, Dict

logger = logging.getLogger(__name__)


class BackgroundTaskRegistry:
    """
    Holds detached asyncio tasks so they are not garbage collected mid-flight.

    Tasks are fire-and-forget: the caller never awaits them and their
    failures are logged here instead of propagating.
    """

    _instance = None

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = BackgroundTaskRegistry()
        return cls._instance

    def spawn(self, name: str, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._cleanup(name, t))
        logger.debug(f"Spawned background task {name}")
        return task

    def pending(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel whatever is still running. Called on shutdown."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _cleanup(self, name: str, task: asyncio.Task):
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background task {name} failed: {exc!r}")
