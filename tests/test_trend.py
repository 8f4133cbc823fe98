"""Tests for trend slope estimation and breach counting."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from perfwatch.core import trend
from perfwatch.models.runtime import TrendState

T0 = datetime(2026, 1, 5, tzinfo=timezone.utc)


def _points(values, step_seconds=60):
    return tuple((T0 + timedelta(seconds=i * step_seconds), float(v)) for i, v in enumerate(values))


class TestSlope:
    def test_linear_growth_per_minute(self):
        assert trend.slope_per_minute(_points([10, 20, 30, 40])) == pytest.approx(10.0)

    def test_step_independent_of_sampling(self):
        # 5 units every 30s is 10 units per minute
        assert trend.slope_per_minute(_points([0, 5, 10], step_seconds=30)) == pytest.approx(10.0)

    def test_flat(self):
        assert trend.slope_per_minute(_points([7, 7, 7, 7])) == 0.0

    def test_decreasing(self):
        assert trend.slope_per_minute(_points([30, 20, 10])) < 0

    def test_too_few_points(self):
        assert trend.slope_per_minute(_points([1, 100])) == 0.0

    def test_same_timestamp(self):
        pts = tuple((T0, float(v)) for v in (1, 2, 3))
        assert trend.slope_per_minute(pts) == 0.0


class TestObserve:
    def _feed(self, values, window=5, threshold=5.0):
        state = TrendState(metric_kind="memory")
        for i, v in enumerate(values):
            state = trend.observe(state, T0 + timedelta(minutes=i), v, window, threshold)
        return state

    def test_breaches_count_up(self):
        state = self._feed([0, 10, 20, 30, 40])
        # Breaching from the third point on
        assert state.consecutive_breaches == 3
        assert state.slope_estimate == pytest.approx(10.0)

    def test_resets_when_slope_drops(self):
        state = self._feed([0, 10, 20, 30, 30, 30, 30, 30], window=4)
        assert state.consecutive_breaches == 0

    def test_window_bounded(self):
        state = self._feed(range(20), window=5)
        assert len(state.recent_values) == 5
        assert state.recent_values[-1][1] == 19.0

    def test_nan_ignored(self):
        state = self._feed([0, 10, 20])
        after = trend.observe(state, T0 + timedelta(minutes=9), math.nan, 5, 5.0)
        assert after is state

    def test_reset_and_trim(self):
        state = self._feed([0, 10, 20, 30], window=10)
        trimmed, dropped = trend.trim(state, 2)
        assert dropped == 2
        assert len(trimmed.recent_values) == 2
        assert trend.trim(trimmed, 5) == (trimmed, 0)
        cleared = trend.reset(state)
        assert cleared.recent_values == ()
        assert cleared.metric_kind == "memory"
        assert not cleared.episode_active
