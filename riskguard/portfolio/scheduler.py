"""Fixed-interval background jobs on the event loop."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicRunner:
    """Runs an async job every ``interval`` seconds until stopped.

    A failing run is logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        job: Callable[[], Awaitable[None]],
        run_immediately: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.job = job
        self.run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.running:
            logger.warning("%s already running", self.name)
            return False
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info("%s started (interval: %ss)", self.name, self.interval)
        return True

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("%s stopped", self.name)

    async def run_once(self) -> None:
        try:
            await self.job()
        except Exception as e:
            logger.error(f"{self.name} run failed: {e}", exc_info=True)

    async def _loop(self) -> None:
        if self.run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
