"""Layered configuration: .perfwatch/config.toml -> PERFWATCH_* env vars -> defaults.

The same merge rules back live updates: ``merge_options`` folds a partial
mapping into a frozen config and returns a new instance.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from pathlib import Path
from typing import Any, TypeVar

from perfwatch.errors import ConfigError

try:
    import tomllib  # 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

logger = logging.getLogger("perfwatch.config")

T = TypeVar("T")

# camelCase spellings accepted from external callers (admin panels, HTTP bodies)
OPTION_ALIASES: dict[str, str] = {
    "metricsInterval": "metrics_interval_ms",
    "alertingEnabled": "alerting_enabled",
    "snapshotEveryRequests": "snapshot_every_requests",
    "webhookUrl": "webhook_url",
    "errorRate": "error_rate",
    "memoryLeakDetection": "memory_leak_detection",
    "performanceDegradation": "performance_degradation",
    "maintenanceTasks": "maintenance_tasks",
    "checkInterval": "check_interval_seconds",
    "windowSize": "window_size",
    "consecutiveChecks": "consecutive_checks",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}
_NULLABLE = {"webhook_url"}


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Rolling-window and snapshot-history caps."""

    max_samples: int = 10_000
    max_age_seconds: float = 300.0
    snapshot_retention_hours: float = 24.0
    max_snapshots: int = 10_000

    def __post_init__(self) -> None:
        if self.max_samples < 1 or self.max_snapshots < 1:
            raise ConfigError("max_samples and max_snapshots must be >= 1")
        if self.max_age_seconds <= 0 or self.snapshot_retention_hours <= 0:
            raise ConfigError("max_age_seconds and snapshot_retention_hours must be > 0")


@dataclass(frozen=True, slots=True)
class ThresholdConfig:
    """Warning and critical ceilings for one alert kind."""

    warning: float
    critical: float

    def __post_init__(self) -> None:
        if self.critical < self.warning:
            raise ConfigError(
                f"critical threshold {self.critical} is below warning {self.warning}"
            )


@dataclass(frozen=True, slots=True)
class ThresholdSet:
    """Per-kind thresholds. Latency is p95 in ms, error_rate in percent,
    memory a heap-used fraction, connections an open-connection count."""

    latency: ThresholdConfig = field(default_factory=lambda: ThresholdConfig(1000.0, 2000.0))
    error_rate: ThresholdConfig = field(default_factory=lambda: ThresholdConfig(5.0, 10.0))
    memory: ThresholdConfig = field(default_factory=lambda: ThresholdConfig(0.85, 0.95))
    connections: ThresholdConfig = field(default_factory=lambda: ThresholdConfig(1000.0, 5000.0))


@dataclass(frozen=True, slots=True)
class MonitorConfig:
    """Snapshot refresh and alerting settings."""

    metrics_interval_ms: int = 15_000
    alerting_enabled: bool = True
    snapshot_every_requests: int = 100
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 5.0
    thresholds: ThresholdSet = field(default_factory=ThresholdSet)

    def __post_init__(self) -> None:
        if self.metrics_interval_ms <= 0:
            raise ConfigError("metrics_interval_ms must be > 0")
        if self.snapshot_every_requests < 1:
            raise ConfigError("snapshot_every_requests must be >= 1")

    @property
    def metrics_interval_seconds(self) -> float:
        return self.metrics_interval_ms / 1000


# Registered maintenance task names
MAINTENANCE_TASKS = ("memory-reclamation", "buffer-compaction", "metrics-purge")

# A slope needs at least this many points
MIN_TREND_SAMPLES = 3


def _check_detector(name: str, check_interval: float, window_size: int, consecutive: int) -> None:
    if check_interval <= 0:
        raise ConfigError(f"{name}.check_interval_seconds must be > 0")
    if window_size < MIN_TREND_SAMPLES:
        raise ConfigError(
            f"{name}.window_size must be >= {MIN_TREND_SAMPLES}, got {window_size}"
        )
    if consecutive < 1:
        raise ConfigError(f"{name}.consecutive_checks must be >= 1")


@dataclass(frozen=True, slots=True)
class LeakDetectionConfig:
    """Heap growth trend detection."""

    enabled: bool = True
    check_interval_seconds: float = 60.0
    window_size: int = 15
    growth_threshold_bytes_per_min: float = 5 * 1024 * 1024
    consecutive_checks: int = 3
    remediation_margin: float = 0.05

    def __post_init__(self) -> None:
        _check_detector(
            "memory_leak_detection", self.check_interval_seconds,
            self.window_size, self.consecutive_checks,
        )
        if not 0 <= self.remediation_margin < 1:
            raise ConfigError("memory_leak_detection.remediation_margin must be in [0, 1)")


@dataclass(frozen=True, slots=True)
class DegradationConfig:
    """p95 latency growth trend detection."""

    enabled: bool = True
    check_interval_seconds: float = 30.0
    window_size: int = 10
    growth_threshold_ms_per_min: float = 50.0
    consecutive_checks: int = 3
    remediation_task: str = "buffer-compaction"

    def __post_init__(self) -> None:
        _check_detector(
            "performance_degradation", self.check_interval_seconds,
            self.window_size, self.consecutive_checks,
        )
        if self.remediation_task not in MAINTENANCE_TASKS:
            raise ConfigError(
                f"Unknown remediation_task {self.remediation_task!r}; "
                f"expected one of {', '.join(MAINTENANCE_TASKS)}"
            )


@dataclass(frozen=True, slots=True)
class MaintenanceConfig:
    """Maintenance sweep and per-task intervals (seconds)."""

    enabled: bool = True
    sweep_interval_seconds: float = 5.0
    memory_reclamation_seconds: float = 300.0
    buffer_compaction_seconds: float = 300.0
    metrics_purge_seconds: float = 600.0
    disabled_tasks: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        intervals = (
            self.sweep_interval_seconds, self.memory_reclamation_seconds,
            self.buffer_compaction_seconds, self.metrics_purge_seconds,
        )
        if any(i <= 0 for i in intervals):
            raise ConfigError("maintenance_tasks intervals must be > 0")
        unknown = sorted(set(self.disabled_tasks) - set(MAINTENANCE_TASKS))
        if unknown:
            raise ConfigError(f"Unknown maintenance tasks in disabled_tasks: {', '.join(unknown)}")


@dataclass(frozen=True, slots=True)
class OptimizerConfig:
    """Settings for the three optimizer task groups."""

    memory_leak_detection: LeakDetectionConfig = field(default_factory=LeakDetectionConfig)
    performance_degradation: DegradationConfig = field(default_factory=DegradationConfig)
    maintenance_tasks: MaintenanceConfig = field(default_factory=MaintenanceConfig)


@dataclass(frozen=True, slots=True)
class PerfwatchConfig:
    """Top-level configuration container."""

    project_path: Path = field(default_factory=Path.cwd)
    store: StoreConfig = field(default_factory=StoreConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)

    @property
    def perfwatch_dir(self) -> Path:
        return self.project_path / ".perfwatch"

    @property
    def config_path(self) -> Path:
        return self.perfwatch_dir / "config.toml"

    @classmethod
    def load(cls, project_path: Path | None = None) -> PerfwatchConfig:
        """Load config with layering: TOML file -> env vars -> defaults."""
        project = Path(project_path) if project_path else Path.cwd()
        toml_path = project / ".perfwatch" / "config.toml"

        toml_data: dict = {}
        if toml_path.is_file():
            with open(toml_path, "rb") as f:
                toml_data = tomllib.load(f)

        store = merge_options(StoreConfig(), toml_data.get("store", {}))
        monitor = merge_options(MonitorConfig(), toml_data.get("monitor", {}))
        optimizer = merge_options(OptimizerConfig(), toml_data.get("optimizer", {}))

        env = _env_overrides()
        store = merge_options(store, env["store"])
        monitor = merge_options(monitor, env["monitor"])
        optimizer = merge_options(optimizer, env["optimizer"])

        return cls(
            project_path=project,
            store=store,
            monitor=monitor,
            optimizer=optimizer,
        )


def _env_overrides() -> dict[str, dict[str, Any]]:
    """Collect PERFWATCH_* variables into partial option mappings."""
    env = os.environ
    out: dict[str, dict[str, Any]] = {"store": {}, "monitor": {}, "optimizer": {}}

    simple = {
        "PERFWATCH_MAX_SAMPLES": ("store", "max_samples"),
        "PERFWATCH_MAX_AGE_SECONDS": ("store", "max_age_seconds"),
        "PERFWATCH_SNAPSHOT_RETENTION_HOURS": ("store", "snapshot_retention_hours"),
        "PERFWATCH_METRICS_INTERVAL_MS": ("monitor", "metrics_interval_ms"),
        "PERFWATCH_ALERTING_ENABLED": ("monitor", "alerting_enabled"),
        "PERFWATCH_SNAPSHOT_EVERY_REQUESTS": ("monitor", "snapshot_every_requests"),
        "PERFWATCH_WEBHOOK_URL": ("monitor", "webhook_url"),
    }
    for var, (section, key) in simple.items():
        if var in env:
            out[section][key] = env[var]

    if "PERFWATCH_LEAK_CHECK_INTERVAL" in env:
        out["optimizer"].setdefault("memory_leak_detection", {})[
            "check_interval_seconds"
        ] = env["PERFWATCH_LEAK_CHECK_INTERVAL"]
    if "PERFWATCH_DEGRADATION_CHECK_INTERVAL" in env:
        out["optimizer"].setdefault("performance_degradation", {})[
            "check_interval_seconds"
        ] = env["PERFWATCH_DEGRADATION_CHECK_INTERVAL"]
    if "PERFWATCH_MAINTENANCE_ENABLED" in env:
        out["optimizer"].setdefault("maintenance_tasks", {})[
            "enabled"
        ] = env["PERFWATCH_MAINTENANCE_ENABLED"]
    return out


def _coerce(name: str, current: Any, raw: Any) -> Any:
    """Coerce raw to the type of the current value of option `name`."""
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in _TRUE | _FALSE:
            return raw.strip().lower() in _TRUE
        raise ConfigError(f"{name} must be a boolean, got {raw!r}")

    if isinstance(current, (int, float)):
        if isinstance(raw, bool):
            raise ConfigError(f"{name} must be a number, got {raw!r}")
        try:
            value = int(raw) if isinstance(current, int) else float(raw)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {raw!r}") from None
        if value < 0:
            raise ConfigError(f"{name} must not be negative, got {value}")
        return value

    if isinstance(current, tuple):
        if isinstance(raw, str):
            return tuple(p.strip() for p in raw.split(",") if p.strip())
        if isinstance(raw, (list, tuple)):
            return tuple(str(p) for p in raw)
        raise ConfigError(f"{name} must be a list, got {raw!r}")

    if raw is None or raw == "":
        if name in _NULLABLE:
            return None
        raise ConfigError(f"{name} must not be empty")
    if isinstance(raw, str):
        return raw
    raise ConfigError(f"{name} must be a string, got {raw!r}")


def merge_options(config: T, partial: Mapping[str, Any] | None) -> T:
    """Return a copy of a frozen config dataclass with `partial` folded in.

    Nested dataclasses merge recursively; unknown keys are logged and ignored.
    """
    if not partial:
        return config
    if not isinstance(partial, Mapping):
        raise ConfigError(f"Expected a mapping of options, got {type(partial).__name__}")

    known = {f.name for f in fields(config)}
    changes: dict[str, Any] = {}
    for raw_key, raw_value in partial.items():
        key = OPTION_ALIASES.get(raw_key, raw_key)
        if key not in known:
            logger.debug("Ignoring unknown option %r for %s", raw_key, type(config).__name__)
            continue
        current = getattr(config, key)
        if is_dataclass(current):
            if not isinstance(raw_value, Mapping):
                raise ConfigError(f"{key} must be a mapping, got {raw_value!r}")
            changes[key] = merge_options(current, raw_value)
        else:
            changes[key] = _coerce(key, current, raw_value)

    return replace(config, **changes) if changes else config
