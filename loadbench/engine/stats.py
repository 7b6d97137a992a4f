"""Reduce raw durations to percentile summaries.

Percentiles use linear interpolation between the closest order statistics
(numpy's default ``linear`` method): for ``n`` sorted values the p-th
percentile sits at rank ``(n - 1) * p / 100``. With a single value every
percentile equals that value.
"""

from collections.abc import Sequence

import numpy as np

from loadbench.engine.models import Statistic

PERCENTILES: tuple[int, ...] = (50, 75, 90, 95, 99)


def summarize(
    samples: Sequence[float],
    wall_time: float | None = None,
) -> Statistic | None:
    """Summarize *samples* (nanoseconds); ``None`` when there is no data.

    *wall_time* is the elapsed wall-clock time in seconds over which the
    samples were collected; the rate is only computed when it is given.
    """
    if len(samples) == 0:
        return None

    arr = np.asarray(samples, dtype=np.float64)
    lo = float(arr.min())
    hi = float(arr.max())
    # float summation can push the mean a ulp outside [min, max]
    mean = min(max(float(arr.mean()), lo), hi)
    p50, p75, p90, p95, p99 = (float(v) for v in np.percentile(arr, PERCENTILES))

    rate = None
    if wall_time is not None and wall_time > 0:
        rate = len(arr) / wall_time

    return Statistic(
        count=len(arr),
        rate=rate,
        mean=mean,
        min=lo,
        max=hi,
        p50=p50,
        p75=p75,
        p90=p90,
        p95=p95,
        p99=p99,
    )


def format_statistic(stat: Statistic | None) -> str:
    """One-line human readable rendering, durations in milliseconds."""
    if stat is None:
        return "--"
    rate = f"{stat.rate:.3f}" if stat.rate is not None else "n/a"
    parts = [
        f"count = {stat.count}",
        f"qps = {rate}",
        f"min = {stat.min / 1e6:.3f}",
        f"max = {stat.max / 1e6:.3f}",
        f"avg = {stat.mean / 1e6:.3f}",
    ]
    for p in PERCENTILES:
        parts.append(f"p{p} = {getattr(stat, f'p{p}') / 1e6:.3f}")
    return ", ".join(parts)
