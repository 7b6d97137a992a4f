"""Single consumer of every worker's sample events."""

import asyncio
import time
from dataclasses import dataclass, field

import structlog

from loadbench.engine.models import Phase, SampleEvent

logger = structlog.get_logger()

# Pushed onto the sample queue once every worker has terminated.
CLOSED = None


@dataclass
class AggregatedSamples:
    """Raw observations of a run. Written only by ``ResultAggregator``."""

    warmup: list[int] = field(default_factory=list)
    measured: list[int] = field(default_factory=list)
    profiling: list[str] = field(default_factory=list)
    last_dispatch: float | None = None


class ResultAggregator:
    """Drains the sample queue until it is closed.

    Every ``progress_interval`` seconds of measured-phase time it logs the
    throughput of the last window. The window counter is updated inside the
    consume loop, so ingestion and reporting never race.
    """

    def __init__(self, samples: asyncio.Queue, progress_interval: float = 5.0) -> None:
        self._queue = samples
        self.progress_interval = progress_interval
        self.data = AggregatedSamples()
        self.throughput_curve: list[tuple[float, float]] = []
        self._measured_start: float | None = None
        self._next_report: float | None = None
        self._window_base = 0

    def mark_started(self, started_at: float) -> None:
        """Begin progress reporting from the start-barrier release time."""
        self._measured_start = started_at
        self._next_report = started_at + self.progress_interval
        self._window_base = len(self.data.measured)

    async def consume(self) -> AggregatedSamples:
        while True:
            try:
                event = await asyncio.wait_for(self._queue.get(), self._until_report())
            except TimeoutError:
                self._maybe_report()
                continue
            if event is CLOSED:
                break
            self.ingest(event)
            self._maybe_report()
        return self.data

    def ingest(self, event: SampleEvent) -> None:
        if event.phase == Phase.WARMUP:
            self.data.warmup.append(event.elapsed_ns)
            return
        self.data.measured.append(event.elapsed_ns)
        if event.profiling:
            self.data.profiling.append(event.profiling)
        if self.data.last_dispatch is None or event.timestamp > self.data.last_dispatch:
            self.data.last_dispatch = event.timestamp

    def _until_report(self) -> float | None:
        if self._next_report is None:
            return None
        return max(0.0, self._next_report - time.monotonic())

    def _maybe_report(self) -> None:
        if self._next_report is None or self._measured_start is None:
            return
        now = time.monotonic()
        if now < self._next_report:
            return
        count = len(self.data.measured)
        qps = (count - self._window_base) / self.progress_interval
        elapsed = self._next_report - self._measured_start
        self.throughput_curve.append((round(elapsed, 1), qps))
        logger.info(
            "measured_throughput",
            elapsed_s=round(elapsed, 1),
            window_s=self.progress_interval,
            qps=round(qps, 2),
            measured=count,
        )
        self._window_base = count
        self._next_report += self.progress_interval
        while self._next_report <= now:
            self._next_report += self.progress_interval
