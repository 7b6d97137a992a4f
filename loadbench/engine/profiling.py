"""Server-reported profiling breakdowns: decoding, flattening, summaries.

A profiling payload is the JSON value of the ``Profiling-Data`` response
header. It always carries eight top-level timings (nanoseconds) and may carry
a tree of named sub-timings under ``additional_profiling``::

    {"in_queue": 1200, ..., "total": 98000,
     "additional_profiling": [
         {"action": "total", "took_ns": 100,
          "sub_actions": [{"action": "parse", "took_ns": 30}]}]}

The tree flattens to ``{"/total": [100], "/total/parse": [30]}``.
"""

import csv
import tempfile
from collections.abc import Iterable, Sequence
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from loadbench.engine.models import ProfilingStatistics
from loadbench.engine.stats import summarize
from loadbench.shared.errors import ProfilingDecodeError, ReportError

logger = structlog.get_logger()

MAX_TREE_DEPTH = 256

# (field name, CSV column / display label), in report order
CANONICAL_FIELDS: tuple[tuple[str, str], ...] = (
    ("in_queue", "InQueue"),
    ("parse_request", "ParseRequest"),
    ("session_lookup", "SessionLookup"),
    ("validate_input", "ValidateInput"),
    ("check_access", "CheckAccess"),
    ("operate", "Operate"),
    ("db_flush", "DbFlush"),
    ("total", "Total"),
)


class ProfilingNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(alias="action")
    elapsed_ns: int = Field(alias="took_ns", ge=0)
    children: list["ProfilingNode"] = Field(default_factory=list, alias="sub_actions")


class ProfilingData(BaseModel):
    """Decoded payload of one call."""

    model_config = ConfigDict(populate_by_name=True)

    in_queue: int = Field(default=0, ge=0)
    parse_request: int = Field(default=0, ge=0)
    session_lookup: int = Field(default=0, ge=0)
    validate_input: int = Field(default=0, ge=0)
    check_access: int = Field(default=0, ge=0)
    operate: int = Field(default=0, ge=0)
    db_flush: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    additional: list[ProfilingNode] = Field(
        default_factory=list, alias="additional_profiling"
    )


def parse_payload(payload: str) -> ProfilingData:
    try:
        return ProfilingData.model_validate_json(payload)
    except ValidationError as exc:
        raise ProfilingDecodeError(f"Malformed profiling payload: {exc}") from exc


def parse_payloads(payloads: Iterable[str]) -> list[ProfilingData]:
    """Decode every payload; a single malformed one fails the whole batch."""
    return [parse_payload(p) for p in payloads]


def flatten_tree(
    nodes: Sequence[ProfilingNode],
    into: dict[str, list[int]] | None = None,
) -> dict[str, list[int]]:
    """Accumulate ``path -> [elapsed_ns, ...]`` for every node in *nodes*.

    Paths join node names from the root with ``/``. Passing the same *into*
    mapping for several trees collects observations across samples.
    """
    paths: dict[str, list[int]] = {} if into is None else into
    stack: list[tuple[ProfilingNode, str, int]] = [
        (node, "", 1) for node in reversed(nodes)
    ]
    while stack:
        node, parent_path, depth = stack.pop()
        if depth > MAX_TREE_DEPTH:
            raise ProfilingDecodeError(
                f"Profiling tree deeper than {MAX_TREE_DEPTH} levels under {parent_path!r}"
            )
        path = f"{parent_path}/{node.name}"
        paths.setdefault(path, []).append(node.elapsed_ns)
        for child in reversed(node.children):
            stack.append((child, path, depth + 1))
    return paths


def summarize_profiling(samples: Sequence[ProfilingData]) -> ProfilingStatistics:
    """Statistic per canonical field plus one per flattened tree path."""
    columns: dict[str, list[int]] = {name: [] for name, _ in CANONICAL_FIELDS}
    additional: dict[str, list[int]] = {}
    for data in samples:
        for name, _ in CANONICAL_FIELDS:
            columns[name].append(getattr(data, name))
        flatten_tree(data.additional, additional)

    return ProfilingStatistics(
        **{name: summarize(values) for name, values in columns.items()},
        additional={path: summarize(values) for path, values in additional.items()},
    )


def write_profiling_csv(samples: Sequence[ProfilingData], directory: str | Path = ".") -> Path:
    """Write one row per sample to a new ``profilingData.*.csv`` file."""
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            newline="",
            dir=directory,
            prefix="profilingData.",
            suffix=".csv",
            delete=False,
        ) as fh:
            writer = csv.writer(fh)
            writer.writerow([label for _, label in CANONICAL_FIELDS])
            writer.writerows(
                [getattr(data, name) for name, _ in CANONICAL_FIELDS] for data in samples
            )
    except OSError as exc:
        raise ReportError(f"Cannot write profiling data to {directory}: {exc}") from exc

    path = Path(fh.name)
    logger.info("profiling_data_saved", path=str(path), rows=len(samples))
    return path
