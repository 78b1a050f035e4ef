"""Refresh scheduler — periodic re-push of every active report group.

Learn: A dashboard left open should not go stale even if no change
message arrives. Every `interval` seconds the scheduler asks the hub to
re-push each group that has members.

The scheduler is an explicitly owned task handle: the app lifespan
starts it once and stops it on shutdown. It does not start or stop
with the first/last connection; with no groups a tick is a no-op.

Usage:
    scheduler = RefreshScheduler(hub, interval=30.0)
    scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
from typing import Optional

import structlog

from livereports.realtime.hub import ReportHub

logger = structlog.get_logger()


class RefreshScheduler:
    def __init__(self, hub: ReportHub, interval: float = 30.0):
        self.hub = hub
        self.interval = interval
        self.ticks = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop. Idempotent."""
        if self.running:
            return
        self._task = asyncio.create_task(self.run_loop())
        logger.info("livereports.scheduler.started", interval=self.interval)

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("livereports.scheduler.stopped", ticks=self.ticks)

    async def run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    async def tick(self) -> int:
        """One refresh pass. Errors are logged, never raised into the loop."""
        self.ticks += 1
        try:
            delivered = await self.hub.refresh_all()
        except Exception:
            logger.exception("livereports.scheduler.error")
            return 0
        if delivered:
            logger.debug("livereports.scheduler.tick", delivered=delivered)
        return delivered
