"""Periodic background jobs run on the API's event loop."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs `job` every `interval` seconds after `initial_delay`, until stopped.

    A failing run is logged and the loop carries on with the next one.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[object]],
        *,
        initial_delay: float = 0.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.initial_delay = initial_delay
        self._job = job
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("Started %s (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped %s", self.name)

    async def run_once(self) -> None:
        try:
            await self._job()
        except Exception:
            logger.exception("%s failed", self.name)

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
