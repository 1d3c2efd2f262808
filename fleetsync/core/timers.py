"""Single-handle periodic timers on the asyncio event loop."""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Any]
Sleeper = Callable[[float], Awaitable[None]]
TimerFactory = Callable[[str, float, TimerCallback], "PeriodicTimer"]


class PeriodicTimer:
    """
    Calls ``callback`` every ``interval`` seconds until stopped.

    The timer owns at most one task. ``start()`` cancels any running task
    before creating a new one, so repeated arming never stacks timers.
    Exceptions from the callback are logged and the timer keeps running.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: TimerCallback,
        sleep: Sleeper = asyncio.sleep,
    ):
        self.name = name
        self.interval = interval
        self._callback = callback
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Arm the timer. Returns False when no event loop is running."""
        self.stop()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running event loop; timer {self.name} not scheduled")
            return False
        self._task = loop.create_task(self._run(), name=f"timer:{self.name}")
        return True

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await self._sleep(self.interval)
            try:
                result = self._callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Timer {self.name} callback failed")
