"""Fixed-interval background tasks with explicit start/stop hooks."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a synchronous callback every ``interval_seconds`` on the event loop.

    The callback runs first after one full interval, never at start. A failing
    callback is logged and the loop keeps its schedule.
    """

    def __init__(self, name: str, interval_seconds: float, callback: Callable[[], object]) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def runs(self) -> int:
        return self._runs

    def start(self) -> None:
        if self.is_running:
            logger.warning("Periodic task %s already running", self.name)
            return
        self._task = asyncio.get_running_loop().create_task(self._run_loop(), name=self.name)
        logger.info("Started periodic task %s (interval=%ss)", self.name, self.interval_seconds)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Stopped periodic task %s", self.name)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
            self._runs += 1
