"""
Periodic background jobs on the event loop.

A failing run is logged and the job keeps its schedule; only ``stop``
ends it.
"""

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval: float, action: Callable[[], Any]):
        self.name = name
        self.interval = interval
        self._action = action
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self._action()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Periodic task %s failed", self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
