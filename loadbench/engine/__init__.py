"""Load-test engine: pacing, workers, aggregation and statistics."""

from .aggregator import AggregatedSamples, ResultAggregator
from .models import (
    Phase,
    ProfilingStatistics,
    SampleEvent,
    Statistic,
    TestConfig,
    TestResult,
    TestSummary,
    WorkerState,
)
from .operation import CallResult, Connector, Operation
from .orchestrator import LoadTest
from .pacer import Pacer
from .report import OutputFormat, load_json, render_json, render_plain, write_report
from .stats import summarize
from .worker import Worker

__all__ = [
    "AggregatedSamples",
    "CallResult",
    "Connector",
    "LoadTest",
    "Operation",
    "OutputFormat",
    "Pacer",
    "Phase",
    "ProfilingStatistics",
    "ResultAggregator",
    "SampleEvent",
    "Statistic",
    "TestConfig",
    "TestResult",
    "TestSummary",
    "Worker",
    "WorkerState",
    "load_json",
    "render_json",
    "render_plain",
    "summarize",
    "write_report",
]
