"""Global dispatch pacing.

A single background task emits ticks at ``1 / rate`` second intervals into a
one-slot buffer shared by every consumer. A tick that finds the slot still
occupied is dropped, so a slow pool runs below the target rate instead of
bursting to catch up.
"""

import asyncio
import math
import time

import structlog

logger = structlog.get_logger()


class Pacer:
    def __init__(self) -> None:
        self._ticks: asyncio.Queue[float] = asyncio.Queue(maxsize=1)
        self._task: asyncio.Task[None] | None = None
        self._interval: float | None = None
        self.emitted = 0
        self.dropped = 0

    @property
    def interval(self) -> float | None:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, rate: float) -> None:
        """Start emitting *rate* ticks per second, first tick one interval from now."""
        if rate <= 0:
            raise ValueError(f"Tick rate must be positive, got {rate}")
        self._cancel()
        self._interval = 1.0 / rate
        self._task = asyncio.create_task(self._run(self._interval), name="pacer")
        logger.debug("pacer_scheduled", rate=rate, interval_s=self._interval)

    def reconfigure(self, rate: float) -> None:
        """Switch to *rate*; a tick already waiting in the buffer is kept."""
        self.schedule(rate)

    async def tick(self) -> float:
        """Wait for the next tick; returns the monotonic time it was emitted."""
        return await self._ticks.get()

    def stop(self) -> None:
        self._cancel()
        logger.debug("pacer_stopped", emitted=self.emitted, dropped=self.dropped)

    def _cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, interval: float) -> None:
        next_at = time.monotonic() + interval
        while True:
            # sleep(0) still yields when the schedule is behind
            await asyncio.sleep(max(0.0, next_at - time.monotonic()))
            now = time.monotonic()
            try:
                self._ticks.put_nowait(now)
                self.emitted += 1
            except asyncio.QueueFull:
                self.dropped += 1
            next_at += interval
            # missed slots are skipped, not replayed
            if next_at <= now:
                missed = math.floor((now - next_at) / interval) + 1
                next_at += missed * interval
                self.dropped += missed
