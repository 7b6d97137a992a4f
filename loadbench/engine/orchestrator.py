"""Phase state machine of a load-test run.

Sequence:

1. Launch one worker per connection. With a non-zero warmup the launches are
   staggered one pacer tick apart (``connections / warmup`` ticks per second).
2. Switch the pacer to the target rate and wait until every worker finished
   its warmup call (readiness barrier).
3. Release the start barrier and let workers dispatch on pacer ticks for the
   measured duration.
4. Signal stop, wait for every worker to terminate, close the sample queue
   and let the aggregator drain it.
5. Reduce the samples to a ``TestSummary``.

A cancellation event (operator interrupt) is observed at every wait; it cuts
the run short and the summary covers whatever was collected.
"""

import asyncio
import time
from collections.abc import Awaitable
from datetime import UTC, datetime
from pathlib import Path

import structlog

from loadbench.engine.aggregator import CLOSED, AggregatedSamples, ResultAggregator
from loadbench.engine.models import TestConfig, TestResult, TestSummary
from loadbench.engine.operation import Connector, Operation
from loadbench.engine.pacer import Pacer
from loadbench.engine.profiling import (
    parse_payloads,
    summarize_profiling,
    write_profiling_csv,
)
from loadbench.engine.stats import summarize
from loadbench.engine.worker import Worker

logger = structlog.get_logger()

SAMPLE_BUFFER = 1000


class LoadTest:
    """Runs one operation against one server according to a ``TestConfig``."""

    def __init__(
        self,
        config: TestConfig,
        operation: Operation,
        connector: Connector,
        *,
        progress_interval: float = 5.0,
        store_profiling_data: bool = False,
        profiling_dir: str | Path = ".",
    ) -> None:
        self.config = config
        self.operation = operation
        self.connector = connector
        self.progress_interval = progress_interval
        self.store_profiling_data = store_profiling_data
        self.profiling_dir = profiling_dir
        self.pacer = Pacer()
        self.workers: list[Worker] = []
        self.aggregator: ResultAggregator | None = None
        self.profiling_csv: Path | None = None
        self._tasks: list[asyncio.Task[None]] = []

    async def run(self, cancel: asyncio.Event | None = None) -> TestSummary:
        cfg = self.config
        cancel = cancel or asyncio.Event()
        test_time = datetime.now(UTC).isoformat()

        samples: asyncio.Queue = asyncio.Queue(maxsize=SAMPLE_BUFFER)
        self.aggregator = ResultAggregator(samples, self.progress_interval)
        consumer = asyncio.create_task(self.aggregator.consume(), name="aggregator")
        start = asyncio.Event()
        stop = asyncio.Event()

        logger.info(
            "load_test_starting",
            test_name=cfg.test_name,
            server=f"{cfg.server_name}:{cfg.server_port}",
            target_qps=cfg.target_qps,
            connections=cfg.connections,
            warmup_s=cfg.warmup_duration,
            duration_s=cfg.test_duration,
        )

        launched_at = time.monotonic()
        started_at: float | None = None
        finished_at: float | None = None
        interrupted = False
        try:
            interrupted = not await self._launch(samples, start, stop, cancel)
            if not interrupted:
                self.pacer.reconfigure(cfg.target_qps)
                interrupted = not await self._wait_for(self._all_ready(), cancel)
            if not interrupted:
                started_at = time.monotonic()
                self.aggregator.mark_started(started_at)
                start.set()
                logger.info("measured_phase_started", workers=len(self.workers))
                interrupted = not await self._wait_for(
                    asyncio.sleep(cfg.test_duration), cancel
                )
                stop.set()
                if not interrupted:
                    interrupted = not await self._wait_for(
                        asyncio.gather(*self._tasks, return_exceptions=True), cancel
                    )
                finished_at = time.monotonic()
            if interrupted:
                logger.warning("load_test_interrupted")
                await self._abort_workers()
        except BaseException:
            await self._abort_workers()
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
            raise
        finally:
            self.pacer.stop()

        await samples.put(CLOSED)
        data = await consumer

        result = self._reduce(data, launched_at, started_at, finished_at)
        logger.info(
            "load_test_complete",
            test_name=cfg.test_name,
            warmup_samples=len(data.warmup),
            measured_samples=len(data.measured),
            actual_test_duration_s=round(result.actual_test_duration, 3),
            interrupted=interrupted,
        )
        return TestSummary(
            test_time=test_time,
            config=cfg,
            result=result,
            interrupted=interrupted,
        )

    # ---- phases ---------------------------------------------------------------

    async def _launch(
        self,
        samples: asyncio.Queue,
        start: asyncio.Event,
        stop: asyncio.Event,
        cancel: asyncio.Event,
    ) -> bool:
        cfg = self.config
        staggered = cfg.warmup_duration > 0
        if staggered:
            self.pacer.schedule(cfg.connections / cfg.warmup_duration)
        for worker_id in range(cfg.connections):
            if staggered and not await self._wait_for(self.pacer.tick(), cancel):
                return False
            worker = Worker(
                worker_id,
                cfg,
                self.operation,
                self.connector,
                self.pacer,
                samples,
                start,
                stop,
            )
            self.workers.append(worker)
            self._tasks.append(asyncio.create_task(worker.run(), name=f"worker-{worker_id}"))
        return True

    async def _all_ready(self) -> None:
        for worker in self.workers:
            await worker.ready.wait()

    async def _wait_for(self, awaitable: Awaitable, cancel: asyncio.Event) -> bool:
        """Wait for *awaitable*; False if *cancel* fired first.

        Re-raises the error of any worker that fails in the meantime.
        """
        target = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            while True:
                running = {t for t in self._tasks if not t.done()}
                done, _ = await asyncio.wait(
                    {target, cancelled, *running}, return_when=asyncio.FIRST_COMPLETED
                )
                self._raise_worker_failure()
                if target in done:
                    return True
                if cancelled in done:
                    return False
        finally:
            target.cancel()
            cancelled.cancel()

    def _raise_worker_failure(self) -> None:
        for task in self._tasks:
            if task.done() and not task.cancelled() and task.exception() is not None:
                exc = task.exception()
                logger.error("worker_failed", task=task.get_name(), error=str(exc))
                raise exc

    async def _abort_workers(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # ---- reduction ------------------------------------------------------------

    def _reduce(
        self,
        data: AggregatedSamples,
        launched_at: float,
        started_at: float | None,
        finished_at: float | None,
    ) -> TestResult:
        warmup_wall = None
        actual = 0.0
        send = 0.0
        if started_at is not None:
            warmup_wall = started_at - launched_at
            actual = (finished_at or time.monotonic()) - started_at
            if data.last_dispatch is not None:
                send = data.last_dispatch - started_at

        result = TestResult(
            warmup=summarize(data.warmup, warmup_wall),
            test=summarize(data.measured, actual or None),
            actual_test_duration=actual,
            send_duration=send,
            profiling_samples=len(data.profiling),
        )
        if data.profiling:
            decoded = parse_payloads(data.profiling)
            result.profiling_results = summarize_profiling(decoded)
            if self.store_profiling_data:
                self.profiling_csv = write_profiling_csv(decoded, self.profiling_dir)
        return result
