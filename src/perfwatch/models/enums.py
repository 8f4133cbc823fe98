"""Enumerations for perfwatch runtime models."""

from enum import Enum


class Severity(str, Enum):
    """Alert severity."""

    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(str, Enum):
    """Which health dimension an alert is about."""

    LATENCY = "latency"
    ERROR_RATE = "error-rate"
    MEMORY = "memory"
    CONNECTION_SATURATION = "connection-saturation"


class AlertSource(str, Enum):
    """Component that raised an alert."""

    THRESHOLD = "threshold"
    LEAK_DETECTION = "leak-detection"
    DEGRADATION_DETECTION = "degradation-detection"
    MANUAL = "manual"


class HealthStatus(str, Enum):
    """Overall health derived from active alerts."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class TaskResult(str, Enum):
    """Outcome of a maintenance task run."""

    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class TrendDirection(str, Enum):
    """Direction of a metric between two halves of a report window."""

    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"
    INCREASING = "increasing"
    DECREASING = "decreasing"


class CheckStatus(str, Enum):
    """Result of a single health check."""

    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
