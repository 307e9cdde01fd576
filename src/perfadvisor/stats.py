"""
Statistical helpers shared by every analysis.

All functions are pure and deterministic. Median, percentile and trend math
lives here and nowhere else.
"""

import math
import statistics
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import STATISTICS
from .models import Trend


@dataclass(frozen=True)
class SampleSummary:
    """Summary statistics for a numeric sample."""
    count: int
    mean: float
    median: float
    p95: float
    min: float
    max: float
    latest: float


def _require_values(values: Sequence[float], operation: str) -> None:
    if not values:
        raise ValueError(f"{operation} requires at least one value")


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean."""
    _require_values(values, "mean")
    return statistics.fmean(values)


def median(values: Sequence[float]) -> float:
    """Median: middle value, or mean of the two middle values for even counts."""
    _require_values(values, "median")
    return statistics.median(values)


def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile.

    Index is ``ceil(p / 100 * n) - 1`` clamped to ``[0, n - 1]`` of the
    ascending-sorted values; no interpolation.
    """
    _require_values(values, "percentile")
    sorted_values = sorted(values)
    index = math.ceil(p / 100 * len(sorted_values)) - 1
    index = max(0, min(index, len(sorted_values) - 1))
    return sorted_values[index]


def percent_change(
    series: Sequence[float],
    window: Optional[int] = None,
) -> Optional[float]:
    """
    Percent change between the mean of the last ``window`` samples and the
    mean of the ``window`` samples before them.

    Returns None when there is no older window or its mean is zero.
    """
    window = window or STATISTICS["trend_window"]
    recent = list(series[-window:])
    older = list(series[-2 * window:-window]) if len(series) > window else []

    if not recent or not older:
        return None

    older_avg = statistics.fmean(older)
    if older_avg == 0:
        return None

    recent_avg = statistics.fmean(recent)
    return (recent_avg - older_avg) / older_avg * 100


def direction(
    series: Sequence[float],
    window: Optional[int] = None,
    threshold_pct: Optional[float] = None,
) -> str:
    """Raw direction of a series: "increasing", "decreasing" or "stable"."""
    threshold = STATISTICS["trend_threshold_pct"] if threshold_pct is None else threshold_pct
    change = percent_change(series, window)
    if change is None:
        return "stable"
    if change > threshold:
        return "increasing"
    if change < -threshold:
        return "decreasing"
    return "stable"


def trend(
    series: Sequence[float],
    higher_is_better: bool = False,
    window: Optional[int] = None,
    threshold_pct: Optional[float] = None,
) -> Trend:
    """
    Judge whether a series is improving, degrading or stable.

    For timings and memory (the default) a rising value is degrading; pass
    ``higher_is_better=True`` for scores.
    """
    moved = direction(series, window, threshold_pct)
    if moved == "stable":
        return Trend.STABLE
    rising = moved == "increasing"
    if rising == higher_is_better:
        return Trend.IMPROVING
    return Trend.DEGRADING


def summarize(values: Sequence[float]) -> SampleSummary:
    """Count, mean, median, p95, min, max and latest of a non-empty sample."""
    _require_values(values, "summarize")
    return SampleSummary(
        count=len(values),
        mean=mean(values),
        median=median(values),
        p95=percentile(values, 95),
        min=min(values),
        max=max(values),
        latest=values[-1],
    )
