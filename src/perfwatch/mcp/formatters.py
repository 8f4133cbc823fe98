"""Markdown formatters for LLM-friendly output."""

from __future__ import annotations

from perfwatch.models.runtime import (
    Alert,
    DashboardReport,
    MemoryOptimizationResult,
    MetricSnapshot,
)

_MIB = 1024 * 1024


def _ms(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.0f} ms"


def format_snapshot(snap: MetricSnapshot, title: str = "Current Metrics") -> str:
    """Format a single snapshot as a metric table."""
    d = snap.to_dict()
    lines = [
        f"## {title}",
        f"**Window:** {d['window_start']} → {d['window_end']}  ",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Requests | {d['request_count']} ({d['requests_per_second']}/s) |",
        f"| Errors | {d['error_count']} ({d['error_rate']}%) |",
        f"| Latency avg | {_ms(d['avg_latency_ms'])} |",
        f"| Latency p50 / p95 / p99 | {_ms(d['p50_latency_ms'])} / {_ms(d['p95_latency_ms'])} / {_ms(d['p99_latency_ms'])} |",
        f"| Latency min / max | {_ms(d['min_latency_ms'])} / {_ms(d['max_latency_ms'])} |",
        f"| Open connections | {d['open_connections']} |",
        f"| Active sessions | {d['active_sessions']} (avg age {_ms(d['avg_session_duration_ms'])}) |",
        f"| Heap | {snap.heap_used_bytes / _MIB:.1f} MB of {snap.heap_limit_bytes / _MIB:.0f} MB ({snap.heap_fraction:.0%}) |",
        f"| CPU | {d['cpu_usage_percent']}% |",
    ]
    return "\n".join(lines)


def format_summary(summary: dict) -> str:
    lines = [
        "## Performance Summary",
        f"**Health:** {summary['health'].upper()}  ",
        f"**Active alerts:** {summary['active_alerts']} (of {summary['total_alerts']} total)  ",
        f"**Uptime:** {summary['uptime_ms'] / 1000:.0f}s",
    ]
    return "\n".join(lines)


def format_alerts(alerts: list[Alert], title: str = "Alerts") -> str:
    if not alerts:
        return f"## {title}\n\nNo alerts."
    lines = [
        f"## {title} ({len(alerts)})",
        "",
        "| ID | Kind | Severity | Source | Raised | Status | Message |",
        "|----|------|----------|--------|--------|--------|---------|",
    ]
    for a in alerts:
        status = "active" if a.active else f"cleared {a.cleared_at.strftime('%H:%M:%S')}"
        lines.append(
            f"| `{a.alert_id}` | {a.kind.value} | {a.severity.value.upper()} | {a.source.value} "
            f"| {a.raised_at.strftime('%H:%M:%S')} | {status} | {a.message} |"
        )
    return "\n".join(lines)


def format_health(health: dict) -> str:
    lines = [
        f"## Health: {health['status'].upper()}",
        f"**Active alerts:** {health['active_alerts']} "
        f"({health['optimizer_alerts']} from trend detection)",
        "",
        "| Check | Status | Value | Message |",
        "|-------|--------|-------|---------|",
    ]
    for check in health["checks"]:
        value = "n/a" if check["value"] is None else check["value"]
        lines.append(f"| {check['name']} | {check['status']} | {value} | {check['message']} |")
    return "\n".join(lines)


def format_optimizer_status(status: dict) -> str:
    leak = status["memory_leak_detection"]
    deg = status["performance_degradation"]
    maint = status["maintenance_tasks"]

    def _on(flag: bool) -> str:
        return "enabled" if flag else "disabled"

    lines = [
        "## Optimizer Status",
        "",
        f"**Leak detection:** {_on(leak['enabled'])}, slope {leak['slope_bytes_per_min'] / _MIB:.2f} MB/min, "
        f"{leak['consecutive_breaches']} consecutive breaches"
        + (" (episode active)" if leak["episode_active"] else "")
        + "  ",
        f"**Degradation detection:** {_on(deg['enabled'])}, slope {deg['slope_ms_per_min']} ms/min, "
        f"{deg['consecutive_breaches']} consecutive breaches"
        + (" (episode active)" if deg["episode_active"] else "")
        + "  ",
        f"**Maintenance:** {_on(maint['enabled'])}",
        "",
        "| Task | Enabled | Interval | Last run | Result | Next run |",
        "|------|---------|----------|----------|--------|----------|",
    ]
    for t in maint["tasks"]:
        lines.append(
            f"| {t['name']} | {t['enabled']} | {t['interval_seconds']:g}s | {t['last_run_at'] or '-'} "
            f"| {t['last_result'] or '-'} | {t['next_run_at']} |"
        )
    if maint["pending_immediate"]:
        lines.append(f"\n**Due immediately:** {', '.join(maint['pending_immediate'])}")
    if status["recommendations"]:
        lines.append("\n### Recommendations")
        lines.extend(f"- {r}" for r in status["recommendations"])
    return "\n".join(lines)


def format_optimization(result: MemoryOptimizationResult) -> str:
    reclaimed = (
        "unsupported" if result.reclaimed_objects is None else f"{result.reclaimed_objects} objects"
    )
    lines = [
        "## Memory Optimization",
        "",
        "| Step | Result |",
        "|------|--------|",
        f"| Heap before | {result.heap_before_bytes / _MIB:.1f} MB |",
        f"| Heap after | {result.heap_after_bytes / _MIB:.1f} MB |",
        f"| Freed | {result.freed_bytes / _MIB:+.1f} MB |",
        f"| Samples evicted | {result.evicted_samples} |",
        f"| Snapshots evicted | {result.evicted_snapshots} |",
        f"| Buffer entries trimmed | {result.trimmed_buffer_entries} |",
        f"| Host reclamation | {reclaimed} |",
    ]
    return "\n".join(lines)


def format_report(report: DashboardReport) -> str:
    lines = [
        f"## Report `{report.report_id}`",
        f"**Window:** last {report.window_hours:g}h "
        f"({report.window_start.isoformat()} → {report.window_end.isoformat()})  ",
        f"**Snapshots:** {len(report.snapshots)}  ",
        f"**Alerts:** {len(report.alerts)}",
        "",
        report.summary_text,
        "",
        "### Trends",
    ]
    lines.extend(f"- {name}: {direction}" for name, direction in report.trends.items())
    lines.append("\n### Recommendations")
    lines.extend(f"- {r}" for r in report.recommendations)
    return "\n".join(lines)


def format_reports(reports: list[DashboardReport]) -> str:
    if not reports:
        return "No reports generated yet."
    lines = [
        "| ID | Generated | Window | Snapshots | Alerts |",
        "|----|-----------|--------|-----------|--------|",
    ]
    for r in reports:
        lines.append(
            f"| `{r.report_id}` | {r.generated_at.strftime('%Y-%m-%d %H:%M:%S')} "
            f"| {r.window_hours:g}h | {len(r.snapshots)} | {len(r.alerts)} |"
        )
    return "\n".join(lines)


def format_config(monitor_config, optimizer_config) -> str:
    t = monitor_config.thresholds
    leak = optimizer_config.memory_leak_detection
    deg = optimizer_config.performance_degradation
    maint = optimizer_config.maintenance_tasks
    lines = [
        "## Configuration",
        "",
        f"**Metrics interval:** {monitor_config.metrics_interval_ms} ms  ",
        f"**Alerting:** {'enabled' if monitor_config.alerting_enabled else 'disabled'}  ",
        f"**Webhook:** {monitor_config.webhook_url or 'none'}",
        "",
        "| Threshold | Warning | Critical |",
        "|-----------|---------|----------|",
        f"| latency (p95 ms) | {t.latency.warning:g} | {t.latency.critical:g} |",
        f"| error_rate (%) | {t.error_rate.warning:g} | {t.error_rate.critical:g} |",
        f"| memory (heap fraction) | {t.memory.warning:g} | {t.memory.critical:g} |",
        f"| connections | {t.connections.warning:g} | {t.connections.critical:g} |",
        "",
        f"**Leak detection:** {leak.enabled}, every {leak.check_interval_seconds:g}s  ",
        f"**Degradation detection:** {deg.enabled}, every {deg.check_interval_seconds:g}s  ",
        f"**Maintenance:** {maint.enabled}, sweep every {maint.sweep_interval_seconds:g}s",
    ]
    return "\n".join(lines)
