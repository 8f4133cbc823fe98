"""Tests for PerformanceDashboard: composite views and reports."""

import json
import math

import pytest

from perfwatch.core.dashboard import (
    MAX_REPORTS,
    PerformanceDashboard,
    compare,
    compute_trends,
    throughput_trend,
)
from perfwatch.core.optimizer import PerformanceOptimizer
from perfwatch.errors import InsufficientDataError
from perfwatch.models.enums import AlertKind, AlertSource, Severity, TrendDirection
from perfwatch.models.runtime import MetricSnapshot


@pytest.fixture
def optimizer(monitor, clock):
    opt = PerformanceOptimizer(monitor, reclaimer=None, clock=clock)
    yield opt
    opt.stop()


@pytest.fixture
def dashboard(monitor, optimizer, clock):
    return PerformanceDashboard(monitor, optimizer, clock=clock)


def _record(monitor, count, duration, status=200):
    for _ in range(count):
        monitor.record_request({"path": "/", "method": "GET"}, {"status_code": status}, duration)


def _snap(clock, avg=100.0, errors=0, rps=1.0):
    return MetricSnapshot(
        snapshot_id="x", window_start=clock(), window_end=clock(),
        request_count=100, error_count=errors, avg_latency_ms=avg, requests_per_second=rps,
    )


class TestTrendHelpers:
    def test_compare(self):
        assert compare(100, 102) is TrendDirection.STABLE
        assert compare(100, 150) is TrendDirection.DEGRADING
        assert compare(100, 50) is TrendDirection.IMPROVING
        assert compare(0, 0) is TrendDirection.STABLE
        assert compare(0, 5) is TrendDirection.DEGRADING
        assert compare(math.nan, 5) is TrendDirection.STABLE

    def test_throughput(self):
        assert throughput_trend(10, 20) is TrendDirection.INCREASING
        assert throughput_trend(10, 5) is TrendDirection.DECREASING
        assert throughput_trend(10, 10.2) is TrendDirection.STABLE

    def test_compute_trends(self, clock):
        snaps = [_snap(clock, avg=100, rps=10), _snap(clock, avg=100, rps=10),
                 _snap(clock, avg=300, rps=5), _snap(clock, avg=300, rps=5)]
        trends = compute_trends(snaps)
        assert trends == {"latency": "degrading", "error_rate": "stable", "throughput": "decreasing"}

    def test_single_snapshot_is_stable(self, clock):
        assert set(compute_trends([_snap(clock)]).values()) == {"stable"}


class TestDashboardData:
    def test_available_before_any_request(self, dashboard):
        data = dashboard.get_dashboard_data()
        assert data["summary"]["health"] == "healthy"
        assert data["metrics"]["current"]["request_count"] == 0
        assert data["metrics"]["current"]["p95_latency_ms"] is None
        assert set(data) == {"summary", "metrics", "alerts", "optimizer", "charts"}
        json.dumps(data)

    def test_composes_monitor_and_optimizer(self, dashboard, monitor):
        _record(monitor, 3, 100)
        monitor.raise_alert(AlertKind.MEMORY, Severity.WARNING, "w")
        data = dashboard.get_dashboard_data()
        assert data["metrics"]["current"]["request_count"] == 3
        assert data["summary"]["active_alerts"] == 1
        assert data["summary"]["total_requests"] == 3
        assert len(data["alerts"]["active"]) == 1
        assert "memory_leak_detection" in data["optimizer"]
        assert len(data["charts"]["labels"]) == len(data["metrics"]["history"])

    def test_history_capped(self, dashboard, monitor, clock):
        for _ in range(60):
            monitor.refresh()
            clock.advance(1)
        data = dashboard.get_dashboard_data()
        assert len(data["metrics"]["history"]) == 50
        assert len(data["charts"]["labels"]) == 30


class TestHealthStatus:
    def test_healthy(self, dashboard):
        health = dashboard.get_health_status()
        assert health["status"] == "healthy"
        assert health["active_alerts"] == 0
        assert health["optimizer_alerts"] == 0
        names = [c["name"] for c in health["checks"]]
        assert names == ["p95_latency", "error_rate", "memory_usage", "connections", "active_alerts"]
        assert all(c["status"] == "pass" for c in health["checks"])

    def test_critical_and_optimizer_alerts(self, dashboard, monitor):
        _record(monitor, 10, 5000)
        monitor.raise_alert(
            AlertKind.MEMORY, Severity.WARNING, "leak", source=AlertSource.LEAK_DETECTION
        )
        health = dashboard.get_health_status()
        assert health["status"] == "critical"
        assert health["optimizer_alerts"] == 1
        latency = next(c for c in health["checks"] if c["name"] == "p95_latency")
        assert latency["status"] == "fail"


class TestReports:
    def test_no_snapshots_raises(self, dashboard):
        with pytest.raises(InsufficientDataError):
            dashboard.generate_report(1)

    def test_one_snapshot_scenario(self, dashboard, monitor):
        snap = monitor.refresh()
        report = dashboard.generate_report(1)
        assert report.snapshots == (snap,)
        assert report.window_hours == 1
        assert report.summary_text

    def test_old_snapshots_excluded(self, dashboard, monitor, clock):
        monitor.refresh()
        clock.advance(2 * 3600)
        with pytest.raises(InsufficientDataError):
            dashboard.generate_report(1)
        assert len(dashboard.generate_report(3).snapshots) == 1

    def test_window_validation(self, dashboard, monitor):
        monitor.refresh()
        for bad in (0, -1, 169):
            with pytest.raises(ValueError):
                dashboard.generate_report(bad)
        assert dashboard.generate_report(168)

    def test_alerts_and_recommendations(self, dashboard, monitor, clock):
        _record(monitor, 10, 3000)
        monitor.refresh()
        report = dashboard.generate_report(1)
        assert len(report.alerts) == 1
        assert any("critical" in r for r in report.recommendations)
        assert any("latency" in r.lower() for r in report.recommendations)

    def test_quiet_recommendation(self, dashboard, monitor):
        monitor.refresh()
        report = dashboard.generate_report(1)
        assert report.recommendations == ("Performance is within acceptable parameters",)

    def test_reports_kept_and_looked_up(self, dashboard, monitor):
        monitor.refresh()
        reports = [dashboard.generate_report(1) for _ in range(MAX_REPORTS + 2)]
        kept = dashboard.get_reports()
        assert len(kept) == MAX_REPORTS
        assert kept[-1] is reports[-1]
        assert dashboard.get_report(reports[-1].report_id) is reports[-1]
        assert dashboard.get_report(reports[0].report_id) is None

    def test_export(self, dashboard, monitor):
        monitor.refresh()
        dashboard.generate_report(1)
        data = json.loads(dashboard.export_data())
        assert set(data) == {"dashboard", "reports", "exported_at"}
        assert len(data["reports"]) == 1
