"""
Periodic refresh scheduler.

``start()`` runs one cycle immediately and then one every
``interval_minutes``. Each tick launches its cycle as an independent task,
so a slow cycle never delays the next tick and cycles may overlap.
"""

import asyncio
import logging
from typing import Optional, Set

from stormwatch.ingestion.orchestrator import FeedOrchestrator

logger = logging.getLogger(__name__)


class Scheduler:
    """Owns the timer task driving FeedOrchestrator.run_cycle."""

    def __init__(self, orchestrator: FeedOrchestrator, interval_minutes: float = 30.0):
        self.orchestrator = orchestrator
        if interval_minutes <= 0:
            raise ValueError(f"Refresh interval must be positive, got {interval_minutes} min")
        self.interval_seconds = interval_minutes * 60.0
        self._timer: Optional[asyncio.Task] = None
        self._cycles: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def start(self):
        """Start the timer. Must be called from a running event loop."""
        if self.running:
            return
        logger.info(f"Starting refresh scheduler (every {self.interval_seconds / 60:.0f} min)")
        self._timer = asyncio.create_task(self._tick_forever(), name="stormwatch-refresh-timer")

    async def stop(self):
        """Cancel the timer and any cycle still in flight."""
        tasks = [t for t in (self._timer, *self._cycles) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
        self._cycles.clear()
        logger.info("Refresh scheduler stopped")

    async def _tick_forever(self):
        while True:
            task = asyncio.create_task(self._guarded_cycle())
            self._cycles.add(task)
            task.add_done_callback(self._cycles.discard)
            await asyncio.sleep(self.interval_seconds)

    async def _guarded_cycle(self):
        try:
            await self.orchestrator.run_cycle()
        except asyncio.CancelledError:
            raise
        except Exception:
            # The timer keeps firing whatever a single cycle does
            logger.exception("Refresh cycle crashed")
