"""Tests for PerfwatchConfig and option merging."""

import pytest

from perfwatch.config import (
    DegradationConfig,
    LeakDetectionConfig,
    MaintenanceConfig,
    MonitorConfig,
    OptimizerConfig,
    PerfwatchConfig,
    StoreConfig,
    ThresholdConfig,
    merge_options,
)
from perfwatch.errors import ConfigError


class TestDefaults:
    def test_store_defaults(self):
        c = StoreConfig()
        assert c.max_samples == 10_000
        assert c.max_age_seconds == 300.0
        assert c.snapshot_retention_hours == 24.0

    def test_monitor_defaults(self):
        c = MonitorConfig()
        assert c.metrics_interval_ms == 15_000
        assert c.metrics_interval_seconds == 15.0
        assert c.alerting_enabled is True
        assert c.webhook_url is None
        assert c.thresholds.latency == ThresholdConfig(1000.0, 2000.0)
        assert c.thresholds.memory.critical == 0.95

    def test_optimizer_defaults(self):
        c = OptimizerConfig()
        assert c.memory_leak_detection.enabled
        assert c.memory_leak_detection.consecutive_checks == 3
        assert c.performance_degradation.remediation_task == "buffer-compaction"
        assert c.maintenance_tasks.disabled_tasks == ()

    def test_invalid_values_rejected(self):
        with pytest.raises(ConfigError):
            ThresholdConfig(warning=10, critical=5)
        with pytest.raises(ConfigError):
            MonitorConfig(metrics_interval_ms=0)
        with pytest.raises(ConfigError):
            StoreConfig(max_samples=0)


class TestMergeOptions:
    def test_nested_merge(self):
        merged = merge_options(
            MonitorConfig(), {"thresholds": {"latency": {"warning": 120, "critical": 250}}}
        )
        assert merged.thresholds.latency == ThresholdConfig(120.0, 250.0)
        assert merged.thresholds.error_rate == ThresholdConfig(5.0, 10.0)

    def test_aliases(self):
        merged = merge_options(
            MonitorConfig(), {"metricsInterval": "5000", "alertingEnabled": "off"}
        )
        assert merged.metrics_interval_ms == 5000
        assert merged.alerting_enabled is False

    def test_optimizer_aliases(self):
        merged = merge_options(
            OptimizerConfig(), {"memoryLeakDetection": {"checkInterval": 5, "windowSize": 4}}
        )
        assert merged.memory_leak_detection.check_interval_seconds == 5.0
        assert merged.memory_leak_detection.window_size == 4

    def test_unknown_keys_ignored(self):
        base = MonitorConfig()
        assert merge_options(base, {"nope": 1}) is base
        assert merge_options(base, None) is base

    def test_disabled_tasks_from_string(self):
        merged = merge_options(
            OptimizerConfig(), {"maintenance_tasks": {"disabled_tasks": "metrics-purge, buffer-compaction"}}
        )
        assert merged.maintenance_tasks.disabled_tasks == ("metrics-purge", "buffer-compaction")

    def test_webhook_can_be_cleared(self):
        cfg = merge_options(MonitorConfig(), {"webhook_url": "http://hooks.local/a"})
        assert cfg.webhook_url == "http://hooks.local/a"
        assert merge_options(cfg, {"webhook_url": None}).webhook_url is None

    @pytest.mark.parametrize(
        "partial",
        [
            {"metrics_interval_ms": "soon"},
            {"metrics_interval_ms": True},
            {"alerting_enabled": "maybe"},
            {"snapshot_every_requests": -1},
            {"thresholds": 5},
            {"thresholds": {"latency": {"warning": 500, "critical": 100}}},
        ],
    )
    def test_bad_values(self, partial):
        with pytest.raises(ConfigError):
            merge_options(MonitorConfig(), partial)

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            merge_options(MonitorConfig(), ["not", "a", "mapping"])


class TestPerfwatchConfig:
    def test_properties(self, tmp_path):
        config = PerfwatchConfig(project_path=tmp_path)
        assert config.perfwatch_dir == tmp_path / ".perfwatch"
        assert config.config_path == tmp_path / ".perfwatch" / "config.toml"

    def test_load_defaults(self, tmp_path):
        config = PerfwatchConfig.load(tmp_path)
        assert config.store == StoreConfig()
        assert config.monitor == MonitorConfig()
        assert config.project_path == tmp_path

    def test_load_from_toml(self, tmp_path):
        pw_dir = tmp_path / ".perfwatch"
        pw_dir.mkdir()
        (pw_dir / "config.toml").write_text(
            "[store]\nmax_samples = 500\n"
            "[monitor]\nmetrics_interval_ms = 2000\n"
            "[monitor.thresholds.latency]\nwarning = 300\ncritical = 900\n"
            "[optimizer.maintenance_tasks]\nenabled = false\n"
        )
        config = PerfwatchConfig.load(tmp_path)
        assert config.store.max_samples == 500
        assert config.monitor.metrics_interval_ms == 2000
        assert config.monitor.thresholds.latency == ThresholdConfig(300.0, 900.0)
        assert config.optimizer.maintenance_tasks.enabled is False

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PERFWATCH_MAX_SAMPLES", "42")
        monkeypatch.setenv("PERFWATCH_ALERTING_ENABLED", "false")
        monkeypatch.setenv("PERFWATCH_LEAK_CHECK_INTERVAL", "12.5")
        config = PerfwatchConfig.load(tmp_path)
        assert config.store.max_samples == 42
        assert config.monitor.alerting_enabled is False
        assert config.optimizer.memory_leak_detection.check_interval_seconds == 12.5

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        pw_dir = tmp_path / ".perfwatch"
        pw_dir.mkdir()
        (pw_dir / "config.toml").write_text("[monitor]\nmetrics_interval_ms = 2000\n")
        monkeypatch.setenv("PERFWATCH_METRICS_INTERVAL_MS", "7000")
        config = PerfwatchConfig.load(tmp_path)
        assert config.monitor.metrics_interval_ms == 7000

    def test_bad_env_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PERFWATCH_MAX_SAMPLES", "lots")
        with pytest.raises(ConfigError):
            PerfwatchConfig.load(tmp_path)


class TestOptimizerValidation:
    @pytest.mark.parametrize("cls", [LeakDetectionConfig, DegradationConfig])
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"consecutive_checks": 0},
            {"window_size": 2},
            {"check_interval_seconds": 0},
        ],
    )
    def test_detector_bounds(self, cls, kwargs):
        with pytest.raises(ConfigError):
            cls(**kwargs)

    def test_smallest_valid_detector(self):
        cfg = LeakDetectionConfig(window_size=3, consecutive_checks=1, check_interval_seconds=0.5)
        assert cfg.window_size == 3

    def test_remediation_margin_range(self):
        with pytest.raises(ConfigError):
            LeakDetectionConfig(remediation_margin=1.5)

    def test_unknown_remediation_task(self):
        with pytest.raises(ConfigError, match="remediation_task"):
            DegradationConfig(remediation_task="defrag")
        assert DegradationConfig(remediation_task="metrics-purge").remediation_task == "metrics-purge"

    def test_maintenance_intervals(self):
        with pytest.raises(ConfigError):
            MaintenanceConfig(sweep_interval_seconds=0)
        with pytest.raises(ConfigError):
            MaintenanceConfig(metrics_purge_seconds=0)

    def test_unknown_disabled_task(self):
        with pytest.raises(ConfigError, match="defrag"):
            MaintenanceConfig(disabled_tasks=("metrics-purge", "defrag"))

    def test_live_update_rejected(self):
        with pytest.raises(ConfigError):
            merge_options(OptimizerConfig(), {"memoryLeakDetection": {"consecutiveChecks": 0}})
        with pytest.raises(ConfigError):
            merge_options(OptimizerConfig(), {"performanceDegradation": {"remediation_task": "nope"}})
