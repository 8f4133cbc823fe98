"""One-per-process bundle wiring store, monitor, optimizer and dashboard together."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from perfwatch.config import OPTION_ALIASES, OptimizerConfig, PerfwatchConfig
from perfwatch.core.clock import Clock, utcnow
from perfwatch.core.dashboard import PerformanceDashboard
from perfwatch.core.host import HostProbe, Reclaimer, gc_reclaim
from perfwatch.core.monitor import PerformanceMonitor
from perfwatch.core.notify import WebhookNotifier
from perfwatch.core.optimizer import PerformanceOptimizer
from perfwatch.core.store import MetricStore

logger = logging.getLogger("perfwatch.context")

_OPTIMIZER_KEYS = {f for f in OptimizerConfig.__dataclass_fields__}


class PerformanceContext:
    """Explicit owner of the subsystem's components.

    Construct one per process (or server) and hand it to the request layer;
    nothing is shared through module state.
    """

    def __init__(
        self,
        config: PerfwatchConfig,
        store: MetricStore,
        monitor: PerformanceMonitor,
        optimizer: PerformanceOptimizer,
        dashboard: PerformanceDashboard,
    ) -> None:
        self.config = config
        self.store = store
        self.monitor = monitor
        self.optimizer = optimizer
        self.dashboard = dashboard

    @classmethod
    def create(
        cls,
        config: PerfwatchConfig | None = None,
        probe: HostProbe | None = None,
        reclaimer: Reclaimer | None = gc_reclaim,
        clock: Clock = utcnow,
        notifier: WebhookNotifier | None = None,
    ) -> PerformanceContext:
        """Build all components. ``reclaimer=None`` models a host without reclamation."""
        if config is None:
            config = PerfwatchConfig.load()
        store = MetricStore(config.store, probe=probe, clock=clock)
        monitor = PerformanceMonitor(config.monitor, store=store, clock=clock, notifier=notifier)
        optimizer = PerformanceOptimizer(monitor, config.optimizer, reclaimer=reclaimer, clock=clock)
        dashboard = PerformanceDashboard(monitor, optimizer, clock=clock)
        return cls(config, store, monitor, optimizer, dashboard)

    def start(self) -> None:
        self.monitor.start()
        self.optimizer.start()

    def stop(self) -> None:
        """Stop background work. Idempotent."""
        self.optimizer.stop()
        self.monitor.stop()

    def __enter__(self) -> PerformanceContext:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def update_config(self, partial: Mapping[str, Any]) -> dict:
        """Route a partial options mapping to the monitor and optimizer.

        Optimizer groups (``memory_leak_detection``, ``performance_degradation``,
        ``maintenance_tasks`` and their camelCase aliases) go to the optimizer;
        everything else goes to the monitor.
        """
        monitor_part: dict[str, Any] = {}
        optimizer_part: dict[str, Any] = {}
        for key, value in partial.items():
            if OPTION_ALIASES.get(key, key) in _OPTIMIZER_KEYS:
                optimizer_part[key] = value
            else:
                monitor_part[key] = value

        monitor_config = self.monitor.update_config(monitor_part) if monitor_part else self.monitor.config
        optimizer_config = (
            self.optimizer.update_config(optimizer_part) if optimizer_part else self.optimizer.config
        )
        return {"monitor": monitor_config, "optimizer": optimizer_config}
