"""Tests for the Typer CLI."""

import json

import pytest
from typer.testing import CliRunner

from perfwatch.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def use_tmp_dir(tmp_path, monkeypatch):
    """Run CLI commands in a temp directory so .perfwatch/config.toml is isolated."""
    monkeypatch.chdir(tmp_path)


def _write_log(tmp_path, lines, name="access.log"):
    path = tmp_path / name
    path.write_text("\n".join(lines) + "\n")
    return str(path)


def _clf(second, status=200, request_time="0.050"):
    return (
        f'10.0.0.1 - - [05/Jan/2026:12:00:{second:02d} +0000] "GET /api HTTP/1.1" '
        f"{status} 512 {request_time}"
    )


class TestReplay:
    def test_healthy_log(self, tmp_path):
        log = _write_log(tmp_path, [_clf(s) for s in range(30)])
        result = runner.invoke(app, ["replay", log])
        assert result.exit_code == 0
        assert "Replayed 30 requests" in result.output
        assert "HEALTHY" in result.output
        assert "No alerts raised." in result.output

    def test_errors_show_alerts(self, tmp_path):
        log = _write_log(tmp_path, [_clf(s, status=503) for s in range(20)])
        result = runner.invoke(app, ["replay", log])
        assert result.exit_code == 0
        assert "CRITICAL" in result.output
        assert "Alerts" in result.output

    def test_with_report(self, tmp_path):
        log = _write_log(tmp_path, [_clf(s) for s in range(30)])
        result = runner.invoke(app, ["replay", log, "--report-hours", "1"])
        assert result.exit_code == 0
        assert "Report report-" in result.output
        assert "latency:" in result.output

    def test_invalid_report_window(self, tmp_path):
        log = _write_log(tmp_path, [_clf(s) for s in range(5)])
        result = runner.invoke(app, ["replay", log, "-r", "500"])
        assert result.exit_code == 1
        assert "Invalid report window" in result.output

    def test_missing_file(self):
        result = runner.invoke(app, ["replay", "nope.log"])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_no_requests(self, tmp_path):
        log = _write_log(tmp_path, ["garbage", "", "more garbage"])
        result = runner.invoke(app, ["replay", log])
        assert result.exit_code == 1
        assert "No requests found" in result.output

    def test_verbose_flag(self, tmp_path):
        log = _write_log(tmp_path, [_clf(s) for s in range(3)])
        result = runner.invoke(app, ["--verbose", "replay", log])
        assert result.exit_code == 0

    def test_bad_log_level_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PERFWATCH_LOG_LEVEL", "chatty")
        log = _write_log(tmp_path, [_clf(s) for s in range(3)])
        result = runner.invoke(app, ["replay", log])
        assert result.exit_code == 2
        assert "Unknown log level" in result.output


class TestConfig:
    def test_json(self):
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["config_file_found"] is False
        assert data["monitor"]["metrics_interval_ms"] == 15000
        assert data["monitor"]["thresholds"]["latency"]["critical"] == 2000.0

    def test_reads_config_file(self, tmp_path):
        (tmp_path / ".perfwatch").mkdir()
        (tmp_path / ".perfwatch" / "config.toml").write_text("[monitor]\nalerting_enabled = false\n")
        result = runner.invoke(app, ["config", "--json"])
        data = json.loads(result.stdout)
        assert data["config_file_found"] is True
        assert data["monitor"]["alerting_enabled"] is False

    def test_table(self):
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Config file" in result.output
        assert "thresholds.latency.warning" in result.output
