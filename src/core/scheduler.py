"""
In-process periodic tasks on the running event loop.

Drives the recovery scan, the monitor cleanup sweep and the in-process
counter cleanup when RECOVERY_RUNNER=inprocess.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from src.core.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Runs an async callable every `interval_seconds` until stopped."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[object]],
        interval_seconds: float,
        run_immediately: bool = False
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info("periodic_task_started", task=self.name, interval_seconds=self.interval_seconds)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_task_stopped", task=self.name, ticks=self.ticks)

    async def run_once(self):
        """Run one tick. A failing tick is logged and does not stop the loop."""
        self.ticks += 1
        try:
            await self.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            logger.error(
                "periodic_task_failed",
                task=self.name,
                error=str(e),
                error_type=type(e).__name__
            )

    async def _run(self):
        if not self.run_immediately:
            await asyncio.sleep(self.interval_seconds)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
