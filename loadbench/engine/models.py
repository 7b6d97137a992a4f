"""Run descriptor, sample events and report models for the load-test engine."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Phase(StrEnum):
    WARMUP = "warmup"
    MEASURED = "measured"


class WorkerState(StrEnum):
    CONNECTING = "connecting"
    WARMED_UP = "warmed_up"
    ARMED = "armed"
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


# ---------------------------------------------------------------------------
# Run descriptor
# ---------------------------------------------------------------------------


class TestConfig(BaseModel):
    """Immutable description of one load-test run.

    Durations are in seconds. ``resource`` is opaque metadata describing the
    object under test (for example a key description) and is only reported.
    """

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    test_name: str
    server_name: str = "localhost"
    server_port: int = Field(default=443, gt=0, le=65535)
    verify_tls: bool = True
    connections: int = Field(default=10, gt=0)
    create_session: bool = False
    warmup_duration: float = Field(default=10.0, ge=0)
    test_duration: float = Field(default=30.0, gt=0)
    target_qps: int = Field(default=10, gt=0)
    resource: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SampleEvent:
    """One successful ``execute`` call as seen by the aggregator.

    ``timestamp`` is the monotonic clock reading at which the worker
    dispatched the call; ``profiling`` is the raw server payload, if any.
    """

    timestamp: float
    phase: Phase
    elapsed_ns: int
    profiling: str | None = None
    worker_id: int = 0


# ---------------------------------------------------------------------------
# Report models
# ---------------------------------------------------------------------------


class Statistic(BaseModel):
    """Summary of a collection of durations, in nanoseconds.

    ``rate`` is samples per second of wall time, ``None`` when no wall time
    was supplied.
    """

    count: int
    rate: float | None = None
    mean: float
    min: float
    max: float
    p50: float
    p75: float
    p90: float
    p95: float
    p99: float


class ProfilingStatistics(BaseModel):
    """Per-field statistics of the server-reported profiling breakdown."""

    in_queue: Statistic | None = None
    parse_request: Statistic | None = None
    session_lookup: Statistic | None = None
    validate_input: Statistic | None = None
    check_access: Statistic | None = None
    operate: Statistic | None = None
    db_flush: Statistic | None = None
    total: Statistic | None = None
    additional: dict[str, Statistic] = Field(default_factory=dict)


class TestResult(BaseModel):
    __test__ = False

    warmup: Statistic | None = None
    test: Statistic | None = None
    actual_test_duration: float = 0.0
    send_duration: float = 0.0
    profiling_samples: int = 0
    profiling_results: ProfilingStatistics | None = None


class TestSummary(BaseModel):
    __test__ = False

    test_time: str  # ISO 8601
    config: TestConfig
    result: TestResult
    interrupted: bool = False
