"""Command-line entry point.

Usage:
    loadbench -s dsm.example.com --qps 100 -c 20 -d 60s version
    loadbench -s dsm.example.com -k $API_KEY --create-session request --path /crypto/v1/keys
    loadbench --output-format json -o result.json version
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Any

import structlog

from loadbench import __version__
from loadbench.config import RunSettings, load_settings
from loadbench.engine.models import TestSummary
from loadbench.engine.operation import Operation
from loadbench.engine.orchestrator import LoadTest
from loadbench.engine.report import write_report
from loadbench.operations.http import HttpConnector, RequestOperation, VersionOperation
from loadbench.shared.errors import ConfigError, LoadbenchError, ReportError
from loadbench.shared.logging import setup_logging

logger = structlog.get_logger()

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """Parse ``"30"``, ``"30s"``, ``"500ms"``, ``"2m"`` or ``"1h"`` into seconds."""
    text = text.strip().lower()
    for unit in sorted(_DURATION_UNITS, key=len, reverse=True):
        if text.endswith(unit):
            number = text[: -len(unit)]
            break
    else:
        unit, number = "s", text
    try:
        return float(number) * _DURATION_UNITS[unit]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid duration: {text!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="loadbench",
        description="Rate-paced load test of a remote operation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Unset flags stay None so environment values apply.
    parser.add_argument("-s", "--server", help="Server host name")
    parser.add_argument("-p", "--port", type=int, help="Server port (default: 443)")
    parser.add_argument("--scheme", choices=["http", "https"], help="URL scheme")
    parser.add_argument(
        "--insecure",
        action="store_true",
        default=None,
        help="Do not validate the server's TLS certificate",
    )
    parser.add_argument(
        "--request-timeout",
        type=parse_duration,
        help="Per-request timeout, 0 means none (default: 60s)",
    )
    parser.add_argument("-k", "--api-key", help="API key used by authenticated operations")
    parser.add_argument("--qps", type=int, help="Target queries per second (default: 10)")
    parser.add_argument(
        "-c", "--connections", type=int, help="Number of concurrent connections (default: 10)"
    )
    parser.add_argument(
        "-d", "--duration", type=parse_duration, help="Measured duration (default: 30s)"
    )
    parser.add_argument(
        "-w", "--warmup", type=parse_duration, help="Warmup duration (default: 10s)"
    )
    parser.add_argument(
        "--create-session",
        action="store_true",
        default=None,
        help="Create a session per connection instead of sending the API key on every call",
    )
    parser.add_argument(
        "--store-profiling-data",
        action="store_true",
        default=None,
        help="Store server profiling data in a CSV file",
    )
    parser.add_argument("--profiling-dir", help="Directory for the profiling CSV file")
    parser.add_argument(
        "--output-format", help="Report format: plain or json (default: plain)"
    )
    parser.add_argument("-o", "--output", help="Write the report to this file instead of stdout")
    parser.add_argument(
        "--progress-interval", type=parse_duration, help="Throughput log interval (default: 5s)"
    )
    parser.add_argument("--log-level", help="Log level (default: INFO)")

    sub = parser.add_subparsers(dest="operation", required=True, metavar="OPERATION")
    sub.add_parser("version", aliases=["ping"], help="Load test the version API")
    request = sub.add_parser("request", help="Load test an arbitrary authenticated request")
    request.add_argument("--method", default="POST", help="HTTP method (default: POST)")
    request.add_argument("--path", required=True, help="Request path")
    request.add_argument("--body", help="JSON request body")
    return parser


_SETTING_ARGS = (
    "server",
    "port",
    "scheme",
    "insecure",
    "request_timeout",
    "api_key",
    "qps",
    "connections",
    "duration",
    "warmup",
    "create_session",
    "store_profiling_data",
    "profiling_dir",
    "output_format",
    "output",
    "progress_interval",
    "log_level",
)


def settings_from_args(args: argparse.Namespace) -> RunSettings:
    return load_settings(**{name: getattr(args, name) for name in _SETTING_ARGS})


def build_operation(args: argparse.Namespace, settings: RunSettings) -> tuple[Operation, str]:
    """Return the operation to run and the run's display name."""
    if args.operation in ("version", "ping"):
        return VersionOperation(), "version"

    body: Any = None
    if args.body is not None:
        try:
            body = json.loads(args.body)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"--body is not valid JSON: {exc}") from exc
    session = "with session" if settings.create_session else "without session"
    name = f"{args.method.upper()} {args.path} {session}"
    operation = RequestOperation(
        method=args.method,
        path=args.path,
        api_key=settings.api_key,
        body=body,
        create_session=settings.create_session,
    )
    return operation, name


def emit(summary: TestSummary, settings: RunSettings) -> None:
    if settings.output is None:
        write_report(summary, settings.output_format, sys.stdout)
        return
    path = Path(settings.output)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as fh:
            write_report(summary, settings.output_format, fh)
    except OSError as exc:
        raise ReportError(f"Cannot write report to {path}: {exc}") from exc
    logger.info("report_written", path=str(path))


def _install_signal_handlers(cancel: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel.set)
        except (NotImplementedError, RuntimeError):
            # not supported on this platform / thread
            pass


async def async_main(args: argparse.Namespace, settings: RunSettings) -> TestSummary:
    operation, name = build_operation(args, settings)
    config = settings.to_test_config(name)
    connector = HttpConnector(scheme=settings.scheme, request_timeout=settings.request_timeout)
    load_test = LoadTest(
        config,
        operation,
        connector,
        progress_interval=settings.progress_interval,
        store_profiling_data=settings.store_profiling_data,
        profiling_dir=settings.profiling_dir,
    )
    cancel = asyncio.Event()
    _install_signal_handlers(cancel)
    return await load_test.run(cancel)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    setup_logging(settings.log_level)

    try:
        summary = asyncio.run(async_main(args, settings))
        emit(summary, settings)
    except LoadbenchError as exc:
        logger.error("load_test_failed", error=str(exc), error_type=type(exc).__name__)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
