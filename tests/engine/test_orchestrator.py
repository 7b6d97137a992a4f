"""End-to-end tests for the load-test orchestrator using in-process operations."""

import asyncio
import json

import pytest

from loadbench.engine.models import Phase, WorkerState
from loadbench.engine.orchestrator import LoadTest
from loadbench.shared.errors import ProfilingDecodeError, SetupError, WarmupError
from tests.fakes import ScriptedOperation, fake_connector

PROFILING = json.dumps(
    {
        "in_queue": 100,
        "parse_request": 200,
        "operate": 700,
        "total": 1000,
        "additional_profiling": [
            {"action": "operate", "took_ns": 700, "sub_actions": [{"action": "hsm", "took_ns": 500}]}
        ],
    }
)


def _load_test(config, operation, opened=None, **kwargs):
    return LoadTest(config, operation, fake_connector(opened), progress_interval=0.2, **kwargs)


class TestLoadTestRun:
    @pytest.mark.asyncio
    async def test_one_per_second_for_three_seconds(self, make_config):
        config = make_config(connections=1, target_qps=1, test_duration=3.0)
        summary = await _load_test(config, ScriptedOperation(latency=0.01)).run()

        stat = summary.result.test
        assert 2 <= stat.count <= 4
        assert stat.min == stat.max == stat.mean == 10_000_000
        assert stat.p50 == stat.p75 == stat.p90 == stat.p95 == stat.p99 == 10_000_000
        assert summary.result.warmup.count == 1

    @pytest.mark.asyncio
    async def test_single_connection_fixed_latency(self, make_config):
        config = make_config(connections=1, target_qps=5, test_duration=1.0)
        summary = await _load_test(config, ScriptedOperation()).run()

        stat = summary.result.test
        assert 4 <= stat.count <= 6
        assert stat.min == stat.max == stat.mean == 10_000_000
        assert stat.p99 == 10_000_000
        assert summary.result.warmup.count == 1
        assert summary.result.actual_test_duration >= 1.0
        assert summary.interrupted is False
        assert summary.config == config

    @pytest.mark.asyncio
    async def test_count_bounded_by_rate(self, make_config):
        config = make_config(connections=4, target_qps=40, test_duration=0.5)
        summary = await _load_test(config, ScriptedOperation(latency=0.001)).run()
        # one tick may already be buffered when the start barrier opens
        assert 5 <= summary.result.test.count <= 40 * 0.5 + 3
        assert summary.result.warmup.count == 4

    @pytest.mark.asyncio
    async def test_slow_pool_runs_below_target(self, make_config):
        config = make_config(connections=1, target_qps=100, test_duration=0.5)
        load_test = _load_test(config, ScriptedOperation(latency=0.05))
        summary = await load_test.run()
        assert summary.result.test.count <= 0.5 / 0.05 + 2
        assert load_test.pacer.dropped > 0

    @pytest.mark.asyncio
    async def test_durations(self, make_config):
        config = make_config(connections=2, target_qps=20, test_duration=0.5)
        summary = await _load_test(config, ScriptedOperation()).run()
        result = summary.result
        assert 0 < result.send_duration <= result.actual_test_duration
        assert result.actual_test_duration == pytest.approx(0.5, abs=0.2)
        assert result.test.rate == pytest.approx(
            result.test.count / result.actual_test_duration
        )

    @pytest.mark.asyncio
    async def test_workers_terminate_and_connections_close(self, make_config):
        opened = []
        operation = ScriptedOperation()
        config = make_config(connections=3, target_qps=30, test_duration=0.3)
        load_test = _load_test(config, operation, opened)
        await load_test.run()

        assert len(opened) == 3
        assert all(conn.closed for conn in opened)
        assert all(w.state == WorkerState.TERMINATED for w in load_test.workers)
        assert operation.setup_calls == operation.cleanup_calls == 3
        assert not load_test.pacer.running

    @pytest.mark.asyncio
    async def test_staggered_warmup(self, make_config):
        config = make_config(connections=3, warmup_duration=0.3, target_qps=20, test_duration=0.2)
        loop = asyncio.get_running_loop()
        t0 = loop.time()
        summary = await _load_test(config, ScriptedOperation()).run()

        # launches are one tick (0.1s) apart, the first after one tick
        assert loop.time() - t0 >= 0.3 + 0.2 - 0.05
        assert summary.result.warmup.count == 3
        assert summary.result.warmup.rate is not None


class TestLoadTestFailures:
    @pytest.mark.asyncio
    async def test_setup_failure_aborts_the_run(self, make_config):
        opened = []
        config = make_config(connections=3, test_duration=5.0)
        operation = ScriptedOperation(fail_setup_on=2)
        load_test = _load_test(config, operation, opened)

        with pytest.raises(SetupError):
            await asyncio.wait_for(load_test.run(), 2.0)
        assert load_test.aggregator.data.measured == []
        # the two armed workers still close their sessions
        assert operation.cleanup_calls == 2
        assert all(task.done() for task in load_test._tasks)
        assert all(conn.closed for conn in opened)
        assert not load_test.pacer.running

    @pytest.mark.asyncio
    async def test_warmup_failure_aborts_the_run(self, make_config):
        config = make_config(connections=2, test_duration=5.0)
        load_test = _load_test(config, ScriptedOperation(fail_warmup=True))
        with pytest.raises(WarmupError):
            await asyncio.wait_for(load_test.run(), 2.0)
        assert load_test.aggregator.data.measured == []

    @pytest.mark.asyncio
    async def test_measured_failures_are_tolerated(self, make_config):
        operation = ScriptedOperation(fail_measured_every=3)
        config = make_config(connections=2, target_qps=40, test_duration=0.4)
        load_test = _load_test(config, operation)
        summary = await load_test.run()

        failures = sum(w.failures for w in load_test.workers)
        assert failures > 0
        assert summary.result.test.count == operation.measured_calls - failures

    @pytest.mark.asyncio
    async def test_cancel_produces_partial_summary(self, make_config):
        config = make_config(connections=2, target_qps=50, test_duration=10.0)
        load_test = _load_test(config, ScriptedOperation())
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.3, cancel.set)

        summary = await asyncio.wait_for(load_test.run(cancel), 2.0)
        assert summary.interrupted is True
        assert summary.result.test.count > 0
        assert summary.result.actual_test_duration < 1.0
        assert all(task.done() for task in load_test._tasks)

    @pytest.mark.asyncio
    async def test_cancel_during_warmup(self, make_config):
        config = make_config(connections=4, warmup_duration=4.0, test_duration=10.0)
        load_test = _load_test(config, ScriptedOperation())
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, cancel.set)

        summary = await asyncio.wait_for(load_test.run(cancel), 2.0)
        assert summary.interrupted is True
        assert summary.result.test is None
        assert summary.result.actual_test_duration == 0.0

    @pytest.mark.asyncio
    async def test_cancel_while_draining_a_hung_call(self, make_config):
        class HungMeasuredCall(ScriptedOperation):
            async def execute(self, conn, phase, arg):
                if phase == Phase.MEASURED:
                    await asyncio.sleep(30)
                return await super().execute(conn, phase, arg)

        operation = HungMeasuredCall()
        config = make_config(connections=1, target_qps=20, test_duration=0.2)
        load_test = _load_test(config, operation)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.5, cancel.set)

        summary = await asyncio.wait_for(load_test.run(cancel), 3.0)
        assert summary.interrupted is True
        assert summary.result.test is None
        assert summary.result.actual_test_duration >= 0.2
        assert all(task.done() for task in load_test._tasks)
        assert operation.cleanup_calls == 1


class TestLoadTestProfiling:
    @pytest.mark.asyncio
    async def test_profiling_is_summarized(self, make_config, tmp_path):
        config = make_config(connections=2, target_qps=40, test_duration=0.3)
        load_test = _load_test(
            config,
            ScriptedOperation(profiling=PROFILING),
            store_profiling_data=True,
            profiling_dir=tmp_path,
        )
        summary = await load_test.run()

        result = summary.result
        assert result.profiling_samples == result.test.count
        profiling = result.profiling_results
        assert profiling.total.min == profiling.total.max == 1000
        assert profiling.session_lookup.max == 0
        assert set(profiling.additional) == {"/operate", "/operate/hsm"}
        assert profiling.additional["/operate/hsm"].mean == 500

        assert load_test.profiling_csv.parent == tmp_path
        lines = load_test.profiling_csv.read_text().splitlines()
        assert lines[0].startswith("InQueue,ParseRequest")
        assert len(lines) == result.profiling_samples + 1

    @pytest.mark.asyncio
    async def test_no_profiling_data(self, make_config, tmp_path):
        config = make_config(connections=1, test_duration=0.2)
        load_test = _load_test(
            config, ScriptedOperation(), store_profiling_data=True, profiling_dir=tmp_path
        )
        summary = await load_test.run()
        assert summary.result.profiling_samples == 0
        assert summary.result.profiling_results is None
        assert load_test.profiling_csv is None

    @pytest.mark.asyncio
    async def test_malformed_profiling_payload(self, make_config):
        config = make_config(connections=1, test_duration=0.2)
        load_test = _load_test(config, ScriptedOperation(profiling='{"total": "slow"}'))
        with pytest.raises(ProfilingDecodeError):
            await load_test.run()
