"""Linear trend estimation for leak and degradation detection."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime

from perfwatch.config import MIN_TREND_SAMPLES
from perfwatch.models.runtime import TrendState

MIN_SAMPLES = MIN_TREND_SAMPLES


def slope_per_minute(points: tuple[tuple[datetime, float], ...]) -> float:
    """Least-squares slope of value against time, in units per minute.

    Returns 0.0 with fewer than MIN_SAMPLES points or when all points share a
    timestamp.
    """
    if len(points) < MIN_SAMPLES:
        return 0.0
    origin = points[0][0]
    xs = [(ts - origin).total_seconds() / 60 for ts, _ in points]
    ys = [value for _, value in points]
    n = len(points)
    mean_x = sum(xs) / n
    mean_y = sum(ys) / n
    sxx = sum((x - mean_x) ** 2 for x in xs)
    if sxx == 0:
        return 0.0
    sxy = sum((x - mean_x) * (y - mean_y) for x, y in zip(xs, ys))
    return sxy / sxx


def observe(
    state: TrendState,
    at: datetime,
    value: float,
    window_size: int,
    threshold: float,
) -> TrendState:
    """Fold one observation into the trend and update the breach counter.

    NaN values (no data for the interval) leave the trend untouched. The
    counter increments while the slope exceeds threshold and resets otherwise.
    """
    if math.isnan(value):
        return state
    recent = (state.recent_values + ((at, value),))[-max(window_size, 1):]
    slope = slope_per_minute(recent)
    breaching = len(recent) >= MIN_SAMPLES and slope > threshold
    return replace(
        state,
        recent_values=recent,
        slope_estimate=slope,
        consecutive_breaches=state.consecutive_breaches + 1 if breaching else 0,
    )


def reset(state: TrendState) -> TrendState:
    """Forget history and end any episode."""
    return TrendState(metric_kind=state.metric_kind)


def trim(state: TrendState, keep: int) -> tuple[TrendState, int]:
    """Keep only the newest `keep` points. Returns (state, dropped count)."""
    dropped = max(0, len(state.recent_values) - keep)
    if not dropped:
        return state, 0
    return replace(state, recent_values=state.recent_values[-keep:]), dropped
