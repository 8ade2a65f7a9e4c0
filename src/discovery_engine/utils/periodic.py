"""Owned, cancelable timer task."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Calls ``callback`` every ``interval`` seconds on the running event loop.

    Errors raised by the callback are logged and the loop keeps going.
    ``start()`` and ``stop()`` are idempotent; ``stop()`` cancels the task and
    waits for it to finish.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], interval: float, name: str = "periodic"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._callback = callback
        self._interval = interval
        self._name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)
        logger.debug(f"Started periodic task '{self._name}' (interval={self._interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Stopped periodic task '{self._name}'")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic task '{self._name}' failed: {e}", exc_info=True)
