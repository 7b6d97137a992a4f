"""One connection, driven through warmup and the measured phase."""

import asyncio
import time
from contextlib import AsyncExitStack
from typing import Any

import structlog

from loadbench.engine.models import Phase, SampleEvent, TestConfig, WorkerState
from loadbench.engine.operation import Connector, Operation
from loadbench.engine.pacer import Pacer
from loadbench.shared.errors import SetupError, WarmupError

logger = structlog.get_logger()


class Worker:
    """Owns a single connection for its whole lifetime.

    Lifecycle: CONNECTING -> WARMED_UP -> ARMED -> RUNNING -> DRAINING ->
    TERMINATED. ``ready`` is set once the warmup call succeeded; the worker
    then blocks on the shared ``start`` event and dispatches one call per
    pacer tick until ``stop`` is set. Once ``setup`` succeeded, ``cleanup``
    runs however the worker ends, cancellation included.
    """

    def __init__(
        self,
        worker_id: int,
        config: TestConfig,
        operation: Operation,
        connector: Connector,
        pacer: Pacer,
        samples: asyncio.Queue,
        start: asyncio.Event,
        stop: asyncio.Event,
    ) -> None:
        self.worker_id = worker_id
        self.config = config
        self.operation = operation
        self.connector = connector
        self.pacer = pacer
        self.samples = samples
        self.start = start
        self.stop = stop
        self.ready = asyncio.Event()
        self.state = WorkerState.CONNECTING
        self.calls = 0
        self.failures = 0

    async def run(self) -> None:
        async with AsyncExitStack() as stack:
            try:
                conn = await stack.enter_async_context(self.connector(self.config))
                arg = await self.operation.setup(conn, self.config)
            except Exception as exc:
                raise SetupError(self.worker_id, f"setup failed: {exc}") from exc

            try:
                self.state = WorkerState.WARMED_UP
                try:
                    arg = await self._call(conn, Phase.WARMUP, arg)
                except Exception as exc:
                    raise WarmupError(self.worker_id, f"warmup call failed: {exc}") from exc

                self.state = WorkerState.ARMED
                self.ready.set()
                await self.start.wait()

                self.state = WorkerState.RUNNING
                await self._dispatch_loop(conn, arg)
            finally:
                self.state = WorkerState.DRAINING
                await self._cleanup(conn)

        self.state = WorkerState.TERMINATED
        logger.debug(
            "worker_terminated",
            worker_id=self.worker_id,
            calls=self.calls,
            failures=self.failures,
        )

    async def _dispatch_loop(self, conn: Any, arg: Any) -> None:
        stop_wait = asyncio.ensure_future(self.stop.wait())
        tick: asyncio.Future | None = None
        try:
            while True:
                tick = asyncio.ensure_future(self.pacer.tick())
                done, _ = await asyncio.wait(
                    {tick, stop_wait}, return_when=asyncio.FIRST_COMPLETED
                )
                if stop_wait in done:
                    return
                try:
                    arg = await self._call(conn, Phase.MEASURED, arg)
                except Exception as exc:
                    self.failures += 1
                    logger.warning(
                        "measured_call_failed",
                        worker_id=self.worker_id,
                        error=str(exc),
                    )
        finally:
            stop_wait.cancel()
            if tick is not None:
                tick.cancel()

    async def _call(self, conn: Any, phase: Phase, arg: Any) -> Any:
        dispatched_at = time.monotonic()
        result = await self.operation.execute(conn, phase, arg)
        self.calls += 1
        await self.samples.put(
            SampleEvent(
                timestamp=dispatched_at,
                phase=phase,
                elapsed_ns=result.elapsed_ns,
                profiling=result.profiling or None,
                worker_id=self.worker_id,
            )
        )
        return result.arg

    async def _cleanup(self, conn: Any) -> None:
        try:
            await self.operation.cleanup(conn)
        except Exception as exc:
            logger.warning("worker_cleanup_failed", worker_id=self.worker_id, error=str(exc))
