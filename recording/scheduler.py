"""
Per-session segment scheduler.

Fires a tick every `interval` seconds while the session is active. The first
tick fires one interval after start. The delay is measured from the start of
one tick to the start of the next, so a slow tick does not delay the
cadence. At most one tick per session runs at a time: an interval that
elapses while the previous tick is still running is skipped, so a slow
transcription engine never builds up a backlog.

stop() cancels the loop so no new tick starts. Ticks already in flight are
left to finish.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SegmentScheduler:
    def __init__(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
        is_active: Callable[[], bool],
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._is_active = is_active
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: set[asyncio.Task] = set()
        self._stopped = False
        self.ticks_started = 0
        self.ticks_skipped = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        if self._loop_task is not None:
            raise RuntimeError(f"Scheduler {self.name} already started")
        self._loop_task = asyncio.create_task(self._run(), name=f"segments-{self.name}")

    def stop(self) -> None:
        self._stopped = True
        if self._loop_task is not None and not self._loop_task.done():
            self._loop_task.cancel()

    async def wait_idle(self) -> None:
        """Wait for ticks that were already running when stop() was called."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._stopped or not self._is_active():
                logger.debug("Scheduler %s idle; not rescheduling", self.name)
                return
            if self._in_flight:
                self.ticks_skipped += 1
                logger.debug("Previous tick for %s still running; skipping this interval", self.name)
                continue
            self.ticks_started += 1
            task = asyncio.create_task(self._guarded_tick(), name=f"segment-tick-{self.name}-{self.ticks_started}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _guarded_tick(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("Segment tick failed for %s: %s", self.name, exc, exc_info=True)
