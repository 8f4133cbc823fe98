"""Leak and degradation detection, memory remediation and scheduled maintenance."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from perfwatch.config import MAINTENANCE_TASKS, OptimizerConfig, merge_options
from perfwatch.core import trend
from perfwatch.core.clock import Clock, utcnow
from perfwatch.core.host import Reclaimer, gc_reclaim, reclaim
from perfwatch.core.monitor import PerformanceMonitor
from perfwatch.core.scheduler import Ticker
from perfwatch.errors import MaintenanceTaskFailure, UnsupportedReclamation
from perfwatch.models.enums import AlertKind, AlertSource, Severity, TaskResult
from perfwatch.models.runtime import (
    Alert,
    MaintenanceTaskRecord,
    MemoryOptimizationResult,
    TrendState,
)

logger = logging.getLogger("perfwatch.optimizer")

MEMORY_RECLAMATION, BUFFER_COMPACTION, METRICS_PURGE = MAINTENANCE_TASKS

_MIB = 1024 * 1024

# Extra reclamation passes run by optimize_performance(aggressive=True)
AGGRESSIVE_PASSES = 2


class PerformanceOptimizer:
    """Owns trend state and maintenance schedules; acts through the monitor.

    The optimizer never edits alerts directly: it raises and clears them with
    ``PerformanceMonitor.raise_alert`` / ``clear_alert``.
    """

    def __init__(
        self,
        monitor: PerformanceMonitor,
        config: OptimizerConfig | None = None,
        reclaimer: Reclaimer | None = gc_reclaim,
        clock: Clock = utcnow,
    ) -> None:
        self._monitor = monitor
        self._store = monitor.store
        self._config = config or OptimizerConfig()
        self._reclaimer = reclaimer
        self._clock = clock
        self._lock = threading.Lock()
        self._created_at = clock()

        self._leak = TrendState(metric_kind="memory")
        self._degradation = TrendState(metric_kind="latency")
        self._leak_alert_id: str | None = None
        self._degradation_alert_id: str | None = None
        self._leak_checked_at: datetime | None = None
        self._degradation_checked_at: datetime | None = None
        self._last_optimization: MemoryOptimizationResult | None = None

        self._buffers: dict[str, Callable[[], int]] = {}
        self._task_actions: dict[str, Callable[[], object]] = {
            MEMORY_RECLAMATION: self._task_memory_reclamation,
            BUFFER_COMPACTION: self._task_buffer_compaction,
            METRICS_PURGE: self._task_metrics_purge,
        }
        self._tasks: dict[str, MaintenanceTaskRecord] = {}
        self._immediate: set[str] = set()
        self._sync_tasks()

        self._started = False
        self._leak_ticker = Ticker(
            "leak-detection",
            self.check_memory_leak,
            lambda: self._config.memory_leak_detection.check_interval_seconds,
        )
        self._degradation_ticker = Ticker(
            "degradation-detection",
            self.check_degradation,
            lambda: self._config.performance_degradation.check_interval_seconds,
        )
        self._maintenance_ticker = Ticker(
            "maintenance",
            self.run_maintenance,
            lambda: self._config.maintenance_tasks.sweep_interval_seconds,
        )

    @property
    def config(self) -> OptimizerConfig:
        return self._config

    @property
    def last_optimization(self) -> MemoryOptimizationResult | None:
        return self._last_optimization

    # --- Lifecycle ---

    def start(self) -> None:
        self._started = True
        self._apply_tickers()
        logger.info("Performance optimizer started")

    def stop(self) -> None:
        """Halt all periodic work. Idempotent."""
        was_started = self._started
        self._started = False
        for ticker in (self._leak_ticker, self._degradation_ticker, self._maintenance_ticker):
            ticker.stop()
        if was_started:
            logger.info("Performance optimizer stopped")

    def _apply_tickers(self) -> None:
        """Start or stop each ticker to match its group's enabled flag."""
        groups = (
            (self._leak_ticker, self._config.memory_leak_detection.enabled),
            (self._degradation_ticker, self._config.performance_degradation.enabled),
            (self._maintenance_ticker, self._config.maintenance_tasks.enabled),
        )
        for ticker, enabled in groups:
            if self._started and enabled:
                ticker.start()
            else:
                ticker.stop()

    def update_config(self, partial: Mapping[str, Any]) -> OptimizerConfig:
        with self._lock:
            self._config = merge_options(self._config, partial)
        self._sync_tasks()
        self._apply_tickers()
        logger.info("Performance optimizer configuration updated: %s", dict(partial))
        return self._config

    # --- Buffers ---

    def register_buffer(self, name: str, trim: Callable[[], int]) -> None:
        """Manage a bounded buffer. ``trim`` evicts beyond its cap and returns the count."""
        with self._lock:
            self._buffers[name] = trim
        logger.debug("Registered buffer %s", name)

    def _trim_buffers(self) -> int:
        with self._lock:
            buffers = list(self._buffers.items())
        trimmed = 0
        for name, trim_fn in buffers:
            try:
                trimmed += int(trim_fn() or 0)
            except Exception:
                logger.warning("Failed to trim buffer %s", name, exc_info=True)
        return trimmed

    def _trim_trends(self) -> int:
        with self._lock:
            self._leak, leak_dropped = trend.trim(
                self._leak, self._config.memory_leak_detection.window_size
            )
            self._degradation, deg_dropped = trend.trim(
                self._degradation, self._config.performance_degradation.window_size
            )
        return leak_dropped + deg_dropped

    # --- Remediation ---

    def _reclaim(self) -> int | None:
        try:
            return reclaim(self._reclaimer)
        except UnsupportedReclamation:
            logger.info("Memory reclamation unsupported on this host; trimmed buffers only")
        except Exception:
            logger.warning("Memory reclamation failed", exc_info=True)
        return None

    def optimize_memory_usage(self) -> MemoryOptimizationResult:
        """Trim every managed buffer, then ask the host to reclaim memory."""
        before = self._store.probe().heap_used_bytes
        samples, snapshots = self._store.trim()
        trimmed = self._trim_buffers() + self._trim_trends()
        reclaimed = self._reclaim()
        after = self._store.probe().heap_used_bytes

        result = MemoryOptimizationResult(
            heap_before_bytes=before,
            heap_after_bytes=after,
            evicted_samples=samples,
            evicted_snapshots=snapshots,
            trimmed_buffer_entries=trimmed,
            reclaimed_objects=reclaimed,
            completed_at=self._clock(),
        )
        self._last_optimization = result
        logger.info(
            "Memory optimization: %+.1f MiB heap, %d samples, %d snapshots, %d buffer entries",
            -result.freed_bytes / _MIB, samples, snapshots, trimmed,
        )
        return result

    def optimize_performance(self, aggressive: bool = False) -> dict:
        """Memory optimization, plus extra reclamation and an alert purge when aggressive."""
        result = self.optimize_memory_usage()
        extra = 0
        purged = 0
        if aggressive:
            for _ in range(AGGRESSIVE_PASSES):
                extra += self._reclaim() or 0
            purged = self._monitor.purge_alerts(self._clock())
            logger.info("Aggressive optimization: %d extra objects, %d alerts purged", extra, purged)
        return {
            "aggressive": aggressive,
            "memory": result.to_dict(),
            "extra_reclaimed_objects": extra,
            "purged_alerts": purged,
        }

    # --- Trend detection ---

    def check_memory_leak(self) -> TrendState:
        """One leak-detection tick over the latest heap reading."""
        cfg = self._config.memory_leak_detection
        if not cfg.enabled:
            return self._leak
        snap = self._monitor.get_current_metrics()
        now = self._clock()

        with self._lock:
            state = trend.observe(
                self._leak, now, float(snap.heap_used_bytes),
                cfg.window_size, cfg.growth_threshold_bytes_per_min,
            )
            trigger = state.consecutive_breaches >= cfg.consecutive_checks and not state.episode_active
            ended = state.consecutive_breaches == 0
            if trigger:
                state = replace(state, episode_active=True)
            elif ended:
                state = replace(state, episode_active=False)
            self._leak = state
            self._leak_checked_at = now

        if ended:
            self._clear_own_alert("_leak_alert_id", "leak trend subsided")
        if not trigger:
            return state

        rate = state.slope_estimate / _MIB
        logger.warning(
            "Suspected memory leak: heap growing %.1f MiB/min for %d checks",
            rate, state.consecutive_breaches,
        )
        alert = self._monitor.raise_alert(
            AlertKind.MEMORY,
            Severity.WARNING,
            f"Suspected memory leak: heap growing {rate:.1f} MiB/min "
            f"for {state.consecutive_breaches} consecutive checks",
            value=state.slope_estimate,
            threshold=cfg.growth_threshold_bytes_per_min,
            source=AlertSource.LEAK_DETECTION,
        )
        self._remember_alert("_leak_alert_id", alert, AlertSource.LEAK_DETECTION)

        result = self.optimize_memory_usage()
        if result.heap_before_bytes > 0 and (
            result.freed_bytes >= cfg.remediation_margin * result.heap_before_bytes
        ):
            logger.info("Leak remediation freed %.1f MiB; resetting trend", result.freed_bytes / _MIB)
            with self._lock:
                self._leak = trend.reset(self._leak)
            self._clear_own_alert("_leak_alert_id", "leak remediated")
        return self._leak

    def check_degradation(self) -> TrendState:
        """One degradation-detection tick over the latest p95 latency."""
        cfg = self._config.performance_degradation
        if not cfg.enabled:
            return self._degradation
        snap = self._monitor.get_current_metrics()
        now = self._clock()

        with self._lock:
            state = trend.observe(
                self._degradation, now, snap.p95_latency_ms,
                cfg.window_size, cfg.growth_threshold_ms_per_min,
            )
            trigger = state.consecutive_breaches >= cfg.consecutive_checks and not state.episode_active
            ended = state.consecutive_breaches == 0
            if trigger:
                state = replace(state, episode_active=True)
                self._immediate.add(cfg.remediation_task)
            elif ended:
                state = replace(state, episode_active=False)
            self._degradation = state
            self._degradation_checked_at = now

        if ended:
            self._clear_own_alert("_degradation_alert_id", "latency trend subsided")
        if not trigger:
            return state

        logger.warning(
            "Performance degradation: p95 latency rising %.0f ms/min; %s due immediately",
            state.slope_estimate, cfg.remediation_task,
        )
        alert = self._monitor.raise_alert(
            AlertKind.LATENCY,
            Severity.WARNING,
            f"Performance degradation: p95 latency rising {state.slope_estimate:.0f} ms/min "
            f"for {state.consecutive_breaches} consecutive checks",
            value=state.slope_estimate,
            threshold=cfg.growth_threshold_ms_per_min,
            source=AlertSource.DEGRADATION_DETECTION,
        )
        self._remember_alert("_degradation_alert_id", alert, AlertSource.DEGRADATION_DETECTION)
        self._maintenance_ticker.wake()
        return state

    def _remember_alert(self, attr: str, alert: Alert | None, source: AlertSource) -> None:
        # An alert of the same kind raised by someone else is not ours to clear.
        if alert is not None and alert.source is source:
            setattr(self, attr, alert.alert_id)

    def _clear_own_alert(self, attr: str, reason: str) -> None:
        alert_id = getattr(self, attr)
        if alert_id is None:
            return
        setattr(self, attr, None)
        self._monitor.clear_alert(alert_id, reason=reason)

    def active_alerts(self) -> list[Alert]:
        """Active alerts raised by trend detection."""
        own = {AlertSource.LEAK_DETECTION, AlertSource.DEGRADATION_DETECTION}
        return [a for a in self._monitor.get_active_alerts() if a.source in own]

    # --- Maintenance ---

    def _sync_tasks(self) -> None:
        """Create or update task records from the maintenance config."""
        cfg = self._config.maintenance_tasks
        intervals = {
            MEMORY_RECLAMATION: cfg.memory_reclamation_seconds,
            BUFFER_COMPACTION: cfg.buffer_compaction_seconds,
            METRICS_PURGE: cfg.metrics_purge_seconds,
        }
        with self._lock:
            for name, interval in intervals.items():
                enabled = name not in cfg.disabled_tasks
                rec = self._tasks.get(name)
                base = rec.last_run_at if rec and rec.last_run_at else self._created_at
                next_run = base + timedelta(seconds=interval)
                if rec is None:
                    self._tasks[name] = MaintenanceTaskRecord(
                        name=name, enabled=enabled, interval_seconds=interval, next_run_at=next_run
                    )
                elif rec.interval_seconds != interval or rec.enabled != enabled:
                    self._tasks[name] = replace(
                        rec, enabled=enabled, interval_seconds=interval, next_run_at=next_run
                    )

    def trigger_task(self, name: str) -> None:
        """Run a task on the next sweep without moving its schedule."""
        with self._lock:
            if name not in self._tasks:
                raise KeyError(name)
            self._immediate.add(name)
        self._maintenance_ticker.wake()

    def get_tasks(self) -> list[MaintenanceTaskRecord]:
        with self._lock:
            return list(self._tasks.values())

    def run_maintenance(self) -> list[MaintenanceTaskRecord]:
        """Run every due or immediately-flagged task. Returns the updated records."""
        if not self._config.maintenance_tasks.enabled:
            return []
        now = self._clock()
        with self._lock:
            names = list(self._tasks)
            scheduled = {n for n, rec in self._tasks.items() if now >= rec.next_run_at}
            immediate = self._immediate & set(names)
            self._immediate.clear()
        return [
            self._run_task(name, now, reschedule=name in scheduled)
            for name in names
            if name in scheduled or name in immediate
        ]

    def _run_task(self, name: str, now: datetime, reschedule: bool) -> MaintenanceTaskRecord:
        with self._lock:
            rec = self._tasks[name]
        error = None
        if not rec.enabled:
            result = TaskResult.SKIPPED
        else:
            try:
                self._task_actions[name]()
                result = TaskResult.OK
            except Exception as exc:
                failure = MaintenanceTaskFailure(name, exc)
                logger.warning("%s", failure, exc_info=True)
                result = TaskResult.FAILED
                error = str(exc)

        next_run = now + timedelta(seconds=rec.interval_seconds) if reschedule else rec.next_run_at
        updated = replace(
            rec, last_run_at=now, last_result=result, last_error=error, next_run_at=next_run
        )
        with self._lock:
            self._tasks[name] = updated
        logger.debug("Maintenance task %s: %s", name, result.value)
        return updated

    def _task_memory_reclamation(self) -> None:
        reclaimed = self._reclaim()
        if reclaimed is not None:
            logger.debug("Reclaimed %d objects", reclaimed)

    def _task_buffer_compaction(self) -> None:
        self._store.trim()
        self._trim_buffers()
        self._trim_trends()

    def _task_metrics_purge(self) -> None:
        retention = timedelta(hours=self._store.config.snapshot_retention_hours)
        self._store.trim()
        purged = self._monitor.purge_alerts(self._clock() - retention)
        if purged:
            logger.info("Purged %d cleared alerts", purged)

    # --- Status ---

    def recommendations(self) -> list[str]:
        recs: list[str] = []
        with self._lock:
            leak = self._leak
            degradation = self._degradation
            failed = [r.name for r in self._tasks.values() if r.last_result is TaskResult.FAILED]
        if leak.episode_active:
            recs.append("Heap keeps growing after remediation; look for unbounded caches or retained references")
        elif leak.consecutive_breaches:
            recs.append("Heap usage is trending upward; watch for a memory leak")
        if degradation.episode_active or degradation.consecutive_breaches:
            recs.append("p95 latency is trending upward; review slow endpoints and downstream calls")
        if self._reclaimer is None:
            recs.append("No memory reclamation capability; only buffer trimming is available")
        for name in failed:
            recs.append(f"Maintenance task {name} failed on its last run")
        return recs

    def get_status(self) -> dict:
        """Which analyses and task groups are active, with their current state."""
        cfg = self._config
        with self._lock:
            leak = self._leak
            degradation = self._degradation
            tasks = [r.to_dict() for r in self._tasks.values()]
            pending = sorted(self._immediate)
            leak_checked = self._leak_checked_at
            degradation_checked = self._degradation_checked_at
        last = self._last_optimization
        return {
            "memory_leak_detection": {
                "enabled": cfg.memory_leak_detection.enabled,
                "consecutive_breaches": leak.consecutive_breaches,
                "episode_active": leak.episode_active,
                "slope_bytes_per_min": round(leak.slope_estimate, 1),
                "last_check": leak_checked.isoformat() if leak_checked else None,
            },
            "performance_degradation": {
                "enabled": cfg.performance_degradation.enabled,
                "consecutive_breaches": degradation.consecutive_breaches,
                "episode_active": degradation.episode_active,
                "slope_ms_per_min": round(degradation.slope_estimate, 2),
                "last_check": degradation_checked.isoformat() if degradation_checked else None,
            },
            "maintenance_tasks": {
                "enabled": cfg.maintenance_tasks.enabled,
                "tasks": tasks,
                "pending_immediate": pending,
            },
            "last_optimization": last.to_dict() if last else None,
            "recommendations": self.recommendations(),
        }
