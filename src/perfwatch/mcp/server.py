"""FastMCP server factory exposing the performance subsystem as tools."""

from __future__ import annotations

import json
import time

from perfwatch.config import PerfwatchConfig
from perfwatch.core.context import PerformanceContext
from perfwatch.errors import ConfigError, InsufficientDataError
from perfwatch.mcp.formatters import (
    format_alerts,
    format_config,
    format_health,
    format_optimization,
    format_optimizer_status,
    format_report,
    format_reports,
    format_snapshot,
    format_summary,
)


def _record(ctx: PerformanceContext, tool_name: str, started: float, ok: bool) -> None:
    """Record a tool invocation as a request against this server's own monitor."""
    ctx.monitor.record_request(
        {"path": tool_name, "method": "TOOL"},
        {"status_code": 200 if ok else 500},
        (time.monotonic() - started) * 1000,
    )


def create_server(context: PerformanceContext | None = None):
    """Create and return a configured FastMCP server instance.

    Args:
        context: Optional pre-built context. If None, one is created from the
            cwd config and its background work is started.
    """
    from mcp.server.fastmcp import FastMCP

    mcp = FastMCP("perfwatch", instructions="Request performance monitoring and self-optimization")
    if context is None:
        context = PerformanceContext.create(PerfwatchConfig.load())
        context.start()
    _ctx = context

    @mcp.tool()
    def perf_metrics() -> str:
        """Current aggregate metrics: request counts, latency percentiles, heap and CPU."""
        started = time.monotonic()
        result = format_snapshot(_ctx.monitor.get_current_metrics())
        _record(_ctx, "perf_metrics", started, True)
        return result

    @mcp.tool()
    def perf_summary() -> str:
        """Overall health (healthy/degraded/critical), alert counts and uptime."""
        started = time.monotonic()
        result = format_summary(_ctx.monitor.get_performance_summary())
        _record(_ctx, "perf_summary", started, True)
        return result

    @mcp.tool()
    def perf_alerts(include_cleared: bool = False, limit: int = 20) -> str:
        """List alerts.

        Args:
            include_cleared: Also show cleared alerts (default: active only)
            limit: Max alerts to return, newest last (default 20)
        """
        started = time.monotonic()
        if include_cleared:
            alerts = _ctx.monitor.get_all_alerts()[-max(1, limit):]
            result = format_alerts(alerts, title="All Alerts")
        else:
            result = format_alerts(_ctx.monitor.get_active_alerts(), title="Active Alerts")
        _record(_ctx, "perf_alerts", started, True)
        return result

    @mcp.tool()
    def perf_resolve_alert(alert_id: str) -> str:
        """Manually clear an active alert.

        Args:
            alert_id: Alert ID as shown by perf_alerts
        """
        started = time.monotonic()
        ok = _ctx.monitor.resolve_alert(alert_id)
        _record(_ctx, "perf_resolve_alert", started, ok)
        if not ok:
            return f"Alert `{alert_id}` not found or already cleared."
        return f"Alert `{alert_id}` resolved."

    @mcp.tool()
    def perf_dashboard() -> str:
        """Composite dashboard view as JSON: summary, metrics history, alerts, optimizer, charts."""
        started = time.monotonic()
        result = json.dumps(_ctx.dashboard.get_dashboard_data(), indent=2, default=str)
        _record(_ctx, "perf_dashboard", started, True)
        return result

    @mcp.tool()
    def perf_health() -> str:
        """Health status with per-metric checks against the configured thresholds."""
        started = time.monotonic()
        result = format_health(_ctx.dashboard.get_health_status())
        _record(_ctx, "perf_health", started, True)
        return result

    @mcp.tool()
    def perf_report(window_hours: float = 1.0) -> str:
        """Generate a historical report over the trailing window.

        Args:
            window_hours: Window length in hours, up to 168 (default 1)
        """
        started = time.monotonic()
        try:
            report = _ctx.dashboard.generate_report(window_hours)
        except InsufficientDataError as exc:
            _record(_ctx, "perf_report", started, True)
            return f"No data yet: {exc}. Try again after the next snapshot."
        except ValueError as exc:
            _record(_ctx, "perf_report", started, False)
            return f"Error generating report: {exc}"
        _record(_ctx, "perf_report", started, True)
        return format_report(report)

    @mcp.tool()
    def perf_reports(report_id: str | None = None) -> str:
        """List generated reports, or show one.

        Args:
            report_id: Report ID to show in full (optional)
        """
        started = time.monotonic()
        if report_id:
            report = _ctx.dashboard.get_report(report_id)
            _record(_ctx, "perf_reports", started, report is not None)
            if report is None:
                return f"Report `{report_id}` not found. Only the last 10 reports are kept."
            return format_report(report)
        result = format_reports(_ctx.dashboard.get_reports())
        _record(_ctx, "perf_reports", started, True)
        return result

    @mcp.tool()
    def perf_config(options: dict | None = None) -> str:
        """Show the live configuration, or update it.

        Args:
            options: Partial options, e.g. {"metricsInterval": 5000,
                "thresholds": {"latency": {"warning": 500}}} (optional)
        """
        started = time.monotonic()
        try:
            if options:
                updated = _ctx.update_config(options)
                monitor_config, optimizer_config = updated["monitor"], updated["optimizer"]
            else:
                monitor_config, optimizer_config = _ctx.monitor.config, _ctx.optimizer.config
        except ConfigError as exc:
            _record(_ctx, "perf_config", started, False)
            return f"Error updating configuration: {exc}"
        _record(_ctx, "perf_config", started, True)
        return format_config(monitor_config, optimizer_config)

    @mcp.tool()
    def perf_optimizer_status() -> str:
        """Leak/degradation detector state, maintenance tasks and recommendations."""
        started = time.monotonic()
        result = format_optimizer_status(_ctx.optimizer.get_status())
        _record(_ctx, "perf_optimizer_status", started, True)
        return result

    @mcp.tool()
    def perf_optimize_memory() -> str:
        """Run a memory optimization pass now: trim buffers and reclaim memory."""
        started = time.monotonic()
        result = format_optimization(_ctx.optimizer.optimize_memory_usage())
        _record(_ctx, "perf_optimize_memory", started, True)
        return result

    @mcp.tool()
    def perf_optimize(aggressive: bool = False) -> str:
        """Run a performance optimization pass.

        Args:
            aggressive: Add extra reclamation passes and purge cleared alerts
        """
        started = time.monotonic()
        outcome = _ctx.optimizer.optimize_performance(aggressive=aggressive)
        _record(_ctx, "perf_optimize", started, True)
        result = format_optimization(_ctx.optimizer.last_optimization)
        if aggressive:
            result += (
                f"\n\n**Extra reclaimed objects:** {outcome['extra_reclaimed_objects']}  "
                f"\n**Purged alerts:** {outcome['purged_alerts']}"
            )
        return result

    return mcp


def main() -> None:
    """Entry point for perfwatch-mcp (stdio transport)."""
    context = PerformanceContext.create(PerfwatchConfig.load())
    context.start()
    try:
        create_server(context).run()
    finally:
        context.stop()


if __name__ == "__main__":
    main()
