"""perfwatch data models."""

from perfwatch.models.enums import (
    AlertKind,
    AlertSource,
    CheckStatus,
    HealthStatus,
    Severity,
    TaskResult,
    TrendDirection,
)
from perfwatch.models.runtime import (
    Alert,
    DashboardReport,
    MaintenanceTaskRecord,
    MemoryOptimizationResult,
    MetricSnapshot,
    ProcessMetrics,
    ReplayEntry,
    ReplayStats,
    RequestSample,
    TrendState,
)

__all__ = [
    "AlertKind",
    "AlertSource",
    "CheckStatus",
    "HealthStatus",
    "Severity",
    "TaskResult",
    "TrendDirection",
    "Alert",
    "DashboardReport",
    "MaintenanceTaskRecord",
    "MemoryOptimizationResult",
    "MetricSnapshot",
    "ProcessMetrics",
    "ReplayEntry",
    "ReplayStats",
    "RequestSample",
    "TrendState",
]
