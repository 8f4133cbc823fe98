"""Read-only composite views and historical reports over monitor and optimizer state."""

from __future__ import annotations

import json
import logging
import math
import threading
import uuid
from collections import deque
from datetime import timedelta

from perfwatch.config import ThresholdConfig
from perfwatch.core.clock import Clock, utcnow
from perfwatch.core.monitor import PerformanceMonitor
from perfwatch.core.optimizer import PerformanceOptimizer
from perfwatch.errors import InsufficientDataError
from perfwatch.models.enums import CheckStatus, Severity, TrendDirection
from perfwatch.models.runtime import Alert, DashboardReport, MetricSnapshot

logger = logging.getLogger("perfwatch.dashboard")

MAX_REPORT_HOURS = 168
MAX_REPORTS = 10
HISTORY_POINTS = 50
RECENT_ALERTS = 20
CHART_POINTS = 30

# Relative change below which a trend counts as stable
TREND_TOLERANCE = 0.05


def _mean(values: list[float]) -> float:
    present = [v for v in values if not math.isnan(v)]
    return sum(present) / len(present) if present else math.nan


def _round(value: float, digits: int = 2) -> float | None:
    return None if math.isnan(value) else round(value, digits)


def compare(first: float, second: float, lower_is_better: bool = True) -> TrendDirection:
    """Direction of change between two period averages."""
    if math.isnan(first) or math.isnan(second) or first == second:
        return TrendDirection.STABLE
    if first == 0:
        change = math.inf
    else:
        change = (second - first) / abs(first)
    if abs(change) < TREND_TOLERANCE:
        return TrendDirection.STABLE
    if (change < 0) == lower_is_better:
        return TrendDirection.IMPROVING
    return TrendDirection.DEGRADING


def throughput_trend(first: float, second: float) -> TrendDirection:
    if first == second:
        return TrendDirection.STABLE
    change = math.inf if first == 0 else (second - first) / first
    if abs(change) < TREND_TOLERANCE:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if change > 0 else TrendDirection.DECREASING


def compute_trends(snapshots: list[MetricSnapshot]) -> dict[str, str]:
    """Compare the first and second half of a snapshot series."""
    half = len(snapshots) // 2
    first, second = snapshots[:half], snapshots[half:]
    if not first:
        return {
            "latency": TrendDirection.STABLE.value,
            "error_rate": TrendDirection.STABLE.value,
            "throughput": TrendDirection.STABLE.value,
        }
    return {
        "latency": compare(
            _mean([s.avg_latency_ms for s in first]), _mean([s.avg_latency_ms for s in second])
        ).value,
        "error_rate": compare(
            _mean([s.error_rate for s in first]), _mean([s.error_rate for s in second])
        ).value,
        "throughput": throughput_trend(
            _mean([s.requests_per_second for s in first]),
            _mean([s.requests_per_second for s in second]),
        ).value,
    }


def chart_series(snapshots: list[MetricSnapshot]) -> dict:
    """Parallel series for plotting, one point per snapshot."""
    return {
        "labels": [s.window_end.isoformat() for s in snapshots],
        "avg_latency_ms": [_round(s.avg_latency_ms) for s in snapshots],
        "p95_latency_ms": [_round(s.p95_latency_ms) for s in snapshots],
        "error_rate": [round(s.error_rate, 2) for s in snapshots],
        "requests_per_second": [round(s.requests_per_second, 3) for s in snapshots],
        "heap_used_mb": [round(s.heap_used_bytes / (1024 * 1024), 1) for s in snapshots],
        "cpu_percent": [s.cpu_usage_percent for s in snapshots],
    }


class PerformanceDashboard:
    """Composes monitor and optimizer state. Owns only the reports it generates."""

    def __init__(
        self,
        monitor: PerformanceMonitor,
        optimizer: PerformanceOptimizer,
        clock: Clock = utcnow,
    ) -> None:
        self._monitor = monitor
        self._optimizer = optimizer
        self._clock = clock
        self._lock = threading.Lock()
        self._reports: deque[DashboardReport] = deque(maxlen=MAX_REPORTS)

    def get_dashboard_data(self) -> dict:
        current = self._monitor.get_current_metrics()
        summary = self._monitor.get_performance_summary()
        history = self._monitor.get_metrics_history()
        recent = history[-10:]
        alerts = self._monitor.get_all_alerts()

        return {
            "summary": {
                "health": summary["health"],
                "uptime_ms": summary["uptime_ms"],
                "active_alerts": summary["active_alerts"],
                "total_requests": sum(s.request_count for s in recent),
                "error_rate": _round(_mean([s.error_rate for s in recent])) or 0.0,
                "avg_latency_ms": _round(_mean([s.avg_latency_ms for s in recent])),
            },
            "metrics": {
                "current": current.to_dict(),
                "history": [s.to_dict() for s in history[-HISTORY_POINTS:]],
            },
            "alerts": {
                "active": [a.to_dict() for a in alerts if a.active],
                "recent": [a.to_dict() for a in alerts[-RECENT_ALERTS:]],
            },
            "optimizer": self._optimizer.get_status(),
            "charts": chart_series(history[-CHART_POINTS:]),
        }

    def get_health_status(self) -> dict:
        """Monitor health plus per-metric checks against the configured thresholds."""
        current = self._monitor.get_current_metrics()
        thresholds = self._monitor.config.thresholds
        active = self._monitor.get_active_alerts()

        checks = [
            _check("p95_latency", current.p95_latency_ms, thresholds.latency, "p95 latency: {:.0f}ms"),
            _check("error_rate", current.error_rate, thresholds.error_rate, "Error rate: {:.2f}%"),
            _check("memory_usage", current.heap_fraction, thresholds.memory, "Heap usage: {:.0%}"),
            _check(
                "connections", float(current.open_connections), thresholds.connections,
                "Open connections: {:.0f}",
            ),
        ]
        alert_status = CheckStatus.PASS if not active else (
            CheckStatus.FAIL if any(a.severity is Severity.CRITICAL for a in active) else CheckStatus.WARN
        )
        checks.append({
            "name": "active_alerts",
            "status": alert_status.value,
            "value": len(active),
            "threshold": 0,
            "message": f"Active alerts: {len(active)}",
        })

        return {
            "status": self._monitor.health().value,
            "checks": checks,
            "active_alerts": len(active),
            "optimizer_alerts": len(self._optimizer.active_alerts()),
        }

    def generate_report(self, window_hours: float) -> DashboardReport:
        """Report over the trailing window.

        Raises ValueError for a window outside (0, 168] hours and
        InsufficientDataError when no snapshot ended inside the window.
        """
        if isinstance(window_hours, bool) or not 0 < window_hours <= MAX_REPORT_HOURS:
            raise ValueError(f"window_hours must be in (0, {MAX_REPORT_HOURS}], got {window_hours!r}")

        now = self._clock()
        start = now - timedelta(hours=window_hours)
        snapshots = [s for s in self._monitor.get_metrics_history(start) if s.window_end <= now]
        if not snapshots:
            raise InsufficientDataError(f"No snapshots in the last {window_hours:g}h")
        alerts = [a for a in self._monitor.get_all_alerts() if a.raised_at >= start]
        trends = compute_trends(snapshots)

        report = DashboardReport(
            report_id=f"report-{uuid.uuid4().hex[:12]}",
            generated_at=now,
            window_hours=window_hours,
            window_start=start,
            window_end=now,
            snapshots=tuple(snapshots),
            alerts=tuple(alerts),
            summary_text=_summary_text(snapshots, alerts, window_hours),
            trends=trends,
            recommendations=tuple(_recommendations(snapshots, alerts, trends)),
        )
        with self._lock:
            self._reports.append(report)
        logger.info(
            "Performance report %s generated (%gh, %d snapshots, %d alerts)",
            report.report_id, window_hours, len(snapshots), len(alerts),
        )
        return report

    def get_reports(self) -> list[DashboardReport]:
        with self._lock:
            return list(self._reports)

    def get_report(self, report_id: str) -> DashboardReport | None:
        with self._lock:
            return next((r for r in self._reports if r.report_id == report_id), None)

    def export_data(self) -> str:
        data = {
            "dashboard": self.get_dashboard_data(),
            "reports": [r.to_dict() for r in self.get_reports()],
            "exported_at": self._clock().isoformat(),
        }
        return json.dumps(data, indent=2)


def _check(name: str, value: float, threshold: ThresholdConfig, message: str) -> dict:
    if math.isnan(value):
        return {
            "name": name, "status": CheckStatus.PASS.value, "value": None,
            "threshold": threshold.warning, "message": f"{name}: no data",
        }
    if value >= threshold.critical:
        status = CheckStatus.FAIL
    elif value >= threshold.warning:
        status = CheckStatus.WARN
    else:
        status = CheckStatus.PASS
    return {
        "name": name,
        "status": status.value,
        "value": round(value, 4),
        "threshold": threshold.warning,
        "message": message.format(value),
    }


def _summary_text(snapshots: list[MetricSnapshot], alerts: list[Alert], window_hours: float) -> str:
    avg = _mean([s.avg_latency_ms for s in snapshots])
    error_rate = _mean([s.error_rate for s in snapshots])
    peak = max(s.requests_per_second for s in snapshots)
    latency = "n/a" if math.isnan(avg) else f"{avg:.0f}ms"
    return (
        f"{len(snapshots)} snapshots over the last {window_hours:g}h: "
        f"avg latency {latency}, error rate {error_rate:.2f}%, "
        f"peak throughput {peak:.1f} req/s, {len(alerts)} alerts"
    )


def _recommendations(
    snapshots: list[MetricSnapshot], alerts: list[Alert], trends: dict[str, str]
) -> list[str]:
    recs: list[str] = []
    avg = _mean([s.avg_latency_ms for s in snapshots])
    error_rate = _mean([s.error_rate for s in snapshots])
    heap = max(s.heap_fraction for s in snapshots)

    if not math.isnan(avg) and avg > 1000:
        recs.append("Average latency exceeds 1s; optimize slow endpoints or add caching")
    if trends["latency"] == TrendDirection.DEGRADING.value:
        recs.append("Latency is trending upward; investigate recent changes or increased load")
    if error_rate > 1:
        recs.append("Error rate exceeds 1%; review error logs")
    if trends["error_rate"] == TrendDirection.DEGRADING.value:
        recs.append("Error rate is increasing; check for failing dependencies")
    if heap > 0.8:
        recs.append("Heap usage above 80%; review for leaks or raise the memory limit")
    if trends["throughput"] == TrendDirection.DECREASING.value:
        recs.append("Throughput is declining; look for bottlenecks or scaling needs")

    critical = sum(1 for a in alerts if a.severity is Severity.CRITICAL)
    if critical:
        recs.append(f"{critical} critical alerts raised; immediate attention required")
    if not recs:
        recs.append("Performance is within acceptable parameters")
    return recs
