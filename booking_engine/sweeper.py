"""
Periodic cleanup of expired booking holds.

Expired holds are already ignored by every read, so the sweeper only keeps
the tables small. It runs as one asyncio task owned by the app lifespan.
"""

import asyncio
import logging
from typing import Optional

from .holds import BookingHoldManager

logger = logging.getLogger(__name__)


class HoldSweeper:
    def __init__(self, hold_manager: BookingHoldManager, interval_seconds: float = 60):
        self.hold_manager = hold_manager
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        try:
            return await self.hold_manager.cleanup_expired_holds()
        except Exception:
            logger.exception("Expired hold sweep failed")
            return 0

    async def _run(self) -> None:
        logger.info("Hold sweeper started (every %ss)", self.interval_seconds)
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Hold sweeper stopped")

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
