"""Render a ``TestSummary`` as plain text or JSON."""

from enum import StrEnum
from typing import TextIO

import structlog

from loadbench.engine.models import ProfilingStatistics, TestConfig, TestResult, TestSummary
from loadbench.engine.profiling import CANONICAL_FIELDS
from loadbench.engine.stats import format_statistic
from loadbench.shared.errors import ReportError

logger = structlog.get_logger()


class OutputFormat(StrEnum):
    PLAIN = "plain"
    JSON = "json"

    @classmethod
    def _missing_(cls, value: object) -> "OutputFormat | None":
        if isinstance(value, str):
            value = value.lower()
            if value == "structured":
                return cls.JSON
            for member in cls:
                if member.value == value:
                    return member
        return None


def _fmt_resource(config: TestConfig) -> str:
    if config.resource is None:
        return "null"
    return ", ".join(f"{k}={v}" for k, v in config.resource.items())


def _config_lines(config: TestConfig) -> list[str]:
    return [
        f"TestName:       {config.test_name}",
        f"ServerName:     {config.server_name}",
        f"ServerPort:     {config.server_port}",
        f"VerifyTls:      {str(config.verify_tls).lower()}",
        f"Connections:    {config.connections}",
        f"CreateSession:  {str(config.create_session).lower()}",
        f"WarmupDuration: {config.warmup_duration:g}s",
        f"TestDuration:   {config.test_duration:g}s",
        f"TargetQPS:      {config.target_qps}",
        f"Resource:       {_fmt_resource(config)}",
    ]


def _qps(count: int, seconds: float) -> str:
    return f"{count / seconds:.2f} QPS" if seconds > 0 else "n/a QPS"


def _result_lines(result: TestResult) -> list[str]:
    measured = result.test.count if result.test else 0
    return [
        f"Warmup:             {format_statistic(result.warmup)}",
        f"Test:               {format_statistic(result.test)}",
        f"ActualTestDuration: {result.actual_test_duration:.3f}s"
        f" ({_qps(measured, result.actual_test_duration)})",
        f"SendDuration:       {result.send_duration:.3f}s"
        f" ({_qps(measured, result.send_duration)})",
        f"ProfilingSamples:   {result.profiling_samples}",
    ]


def _profiling_lines(profiling: ProfilingStatistics) -> list[str]:
    rows = [(label, getattr(profiling, name)) for name, label in CANONICAL_FIELDS]
    rows.extend(profiling.additional.items())
    width = max(len(label) for label, _ in rows)
    return [f"{label.rjust(width)}: {format_statistic(stat)}" for label, stat in rows]


def render_plain(summary: TestSummary) -> str:
    lines = ["-----BEGIN TEST SUMMARY-----", f"TestTime:       {summary.test_time}"]
    if summary.interrupted:
        lines.append("Interrupted:    true")
    lines.extend(_config_lines(summary.config))
    lines.append("")
    lines.extend(_result_lines(summary.result))
    if summary.result.profiling_results is not None:
        lines.append("")
        lines.extend(_profiling_lines(summary.result.profiling_results))
    lines.append("-----END TEST SUMMARY-----")
    return "\n".join(lines) + "\n"


def render_json(summary: TestSummary) -> str:
    return summary.model_dump_json(indent=2) + "\n"


def load_json(text: str | bytes) -> TestSummary:
    return TestSummary.model_validate_json(text)


RENDERERS = {
    OutputFormat.PLAIN: render_plain,
    OutputFormat.JSON: render_json,
}


def write_report(summary: TestSummary, fmt: OutputFormat, stream: TextIO) -> None:
    """Write *summary* to *stream*; any I/O failure becomes ``ReportError``."""
    text = RENDERERS[fmt](summary)
    try:
        stream.write(text)
        stream.flush()
    except (OSError, ValueError) as exc:
        raise ReportError(f"Cannot write report: {exc}") from exc
    logger.debug("report_written", format=str(fmt), chars=len(text))
