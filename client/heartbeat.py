# ============================================================================
# HEARTBEAT
# ============================================================================
# EPOCH: 1 - FUNCTION POLLING
# STATUS: Client - Background liveness ping
# PURPOSE: Announce active services to the control plane on an interval
# CREATED: 19 OCT 2026
# ============================================================================
"""
Heartbeat

Cancellable background task that calls a beat coroutine on a fixed
interval. Beat failures are logged and never stop the heartbeat.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class Heartbeat:
    """Interval task with an explicit start/stop lifecycle."""

    def __init__(self, interval: float, beat: Callable[[], Awaitable[None]]):
        self.interval = interval
        self._beat = beat
        self._task: Optional[asyncio.Task] = None
        self.beats = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start beating. Must be called from within a running event loop."""
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        logger.debug(f"Heartbeat started (interval={self.interval}s)")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("Heartbeat stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self._beat()
                self.beats += 1
            except Exception as e:
                self.failures += 1
                logger.warning(f"Heartbeat failed: {e}")


__all__ = ["Heartbeat"]
