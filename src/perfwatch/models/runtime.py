"""Frozen dataclass models for request telemetry, alerts and reports."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from perfwatch.models.enums import AlertKind, AlertSource, Severity, TaskResult


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _ms(value: float) -> float | None:
    """Round a latency for output; NaN (no data) becomes None."""
    if math.isnan(value):
        return None
    return round(value, 2)


@dataclass(frozen=True, slots=True)
class RequestSample:
    """One completed request as seen by the request layer."""

    path: str
    method: str
    status_code: int
    duration_ms: float
    session_id: str | None = None
    timestamp: datetime = field(default_factory=_now)

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


@dataclass(frozen=True, slots=True)
class ReplayEntry:
    """One request parsed from an access log line."""

    method: str
    path: str
    status_code: int | None = None
    duration_ms: float | None = None
    session_id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class ReplayStats:
    """Outcome of replaying an access log."""

    lines: int = 0
    recorded: int = 0
    skipped: int = 0
    snapshots: int = 0
    first_timestamp: datetime | None = None
    last_timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class ProcessMetrics:
    """Point-in-time host metrics for the current process."""

    heap_used_bytes: int
    heap_limit_bytes: int
    cpu_percent: float
    captured_at: datetime = field(default_factory=_now)


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    """Aggregate of the rolling window at a point in time.

    Latency fields are NaN when the window holds no samples.
    """

    snapshot_id: str
    window_start: datetime
    window_end: datetime
    request_count: int = 0
    error_count: int = 0
    p50_latency_ms: float = math.nan
    p95_latency_ms: float = math.nan
    p99_latency_ms: float = math.nan
    avg_latency_ms: float = math.nan
    min_latency_ms: float = math.nan
    max_latency_ms: float = math.nan
    requests_per_second: float = 0.0
    open_connections: int = 0
    active_sessions: int = 0
    avg_session_duration_ms: float = math.nan
    heap_used_bytes: int = 0
    heap_limit_bytes: int = 0
    cpu_usage_percent: float = 0.0

    @property
    def error_rate(self) -> float:
        """Share of failed requests, in percent."""
        if self.request_count == 0:
            return 0.0
        return self.error_count / self.request_count * 100

    @property
    def heap_fraction(self) -> float:
        if self.heap_limit_bytes <= 0:
            return 0.0
        return self.heap_used_bytes / self.heap_limit_bytes

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "window_start": _iso(self.window_start),
            "window_end": _iso(self.window_end),
            "request_count": self.request_count,
            "error_count": self.error_count,
            "error_rate": round(self.error_rate, 2),
            "p50_latency_ms": _ms(self.p50_latency_ms),
            "p95_latency_ms": _ms(self.p95_latency_ms),
            "p99_latency_ms": _ms(self.p99_latency_ms),
            "avg_latency_ms": _ms(self.avg_latency_ms),
            "min_latency_ms": _ms(self.min_latency_ms),
            "max_latency_ms": _ms(self.max_latency_ms),
            "requests_per_second": round(self.requests_per_second, 3),
            "open_connections": self.open_connections,
            "active_sessions": self.active_sessions,
            "avg_session_duration_ms": _ms(self.avg_session_duration_ms),
            "heap_used_bytes": self.heap_used_bytes,
            "heap_limit_bytes": self.heap_limit_bytes,
            "cpu_usage_percent": round(self.cpu_usage_percent, 1),
        }


@dataclass(frozen=True, slots=True)
class Alert:
    """A threshold or trend breach. Active while cleared_at is unset."""

    alert_id: str
    kind: AlertKind
    severity: Severity
    message: str
    raised_at: datetime = field(default_factory=_now)
    value: float = 0.0
    threshold: float = 0.0
    source: AlertSource = AlertSource.THRESHOLD
    cleared_at: datetime | None = None

    @property
    def active(self) -> bool:
        return self.cleared_at is None

    def to_dict(self) -> dict:
        return {
            "alert_id": self.alert_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "raised_at": _iso(self.raised_at),
            "cleared_at": _iso(self.cleared_at),
            "value": round(self.value, 4),
            "threshold": self.threshold,
            "source": self.source.value,
        }


@dataclass(frozen=True, slots=True)
class TrendState:
    """Recent history of one metric plus its fitted slope (units per minute)."""

    metric_kind: str
    recent_values: tuple[tuple[datetime, float], ...] = ()
    slope_estimate: float = 0.0
    consecutive_breaches: int = 0
    episode_active: bool = False

    def to_dict(self) -> dict:
        return {
            "metric_kind": self.metric_kind,
            "samples": len(self.recent_values),
            "slope_estimate": round(self.slope_estimate, 4),
            "consecutive_breaches": self.consecutive_breaches,
            "episode_active": self.episode_active,
        }


@dataclass(frozen=True, slots=True)
class MaintenanceTaskRecord:
    """Scheduling state of one registered maintenance task."""

    name: str
    enabled: bool
    interval_seconds: float
    next_run_at: datetime
    last_run_at: datetime | None = None
    last_result: TaskResult | None = None
    last_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "interval_seconds": self.interval_seconds,
            "last_run_at": _iso(self.last_run_at),
            "last_result": self.last_result.value if self.last_result else None,
            "last_error": self.last_error,
            "next_run_at": _iso(self.next_run_at),
        }


@dataclass(frozen=True, slots=True)
class MemoryOptimizationResult:
    """What one optimize_memory_usage() pass did."""

    heap_before_bytes: int
    heap_after_bytes: int
    evicted_samples: int = 0
    evicted_snapshots: int = 0
    trimmed_buffer_entries: int = 0
    reclaimed_objects: int | None = None  # None: reclamation unsupported
    completed_at: datetime = field(default_factory=_now)

    @property
    def freed_bytes(self) -> int:
        return self.heap_before_bytes - self.heap_after_bytes

    def to_dict(self) -> dict:
        return {
            "heap_before_bytes": self.heap_before_bytes,
            "heap_after_bytes": self.heap_after_bytes,
            "freed_bytes": self.freed_bytes,
            "evicted_samples": self.evicted_samples,
            "evicted_snapshots": self.evicted_snapshots,
            "trimmed_buffer_entries": self.trimmed_buffer_entries,
            "reclaimed_objects": self.reclaimed_objects,
            "completed_at": _iso(self.completed_at),
        }


@dataclass(frozen=True, slots=True)
class DashboardReport:
    """Historical report over a trailing window. Owned by the caller."""

    report_id: str
    generated_at: datetime
    window_hours: float
    window_start: datetime
    window_end: datetime
    snapshots: tuple[MetricSnapshot, ...]
    alerts: tuple[Alert, ...]
    summary_text: str
    trends: dict[str, str] = field(default_factory=dict)
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "report_id": self.report_id,
            "generated_at": _iso(self.generated_at),
            "window_hours": self.window_hours,
            "window_start": _iso(self.window_start),
            "window_end": _iso(self.window_end),
            "snapshots": [s.to_dict() for s in self.snapshots],
            "alerts": [a.to_dict() for a in self.alerts],
            "summary_text": self.summary_text,
            "trends": dict(self.trends),
            "recommendations": list(self.recommendations),
        }
