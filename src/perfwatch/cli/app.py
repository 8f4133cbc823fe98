"""Typer CLI for perfwatch."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from perfwatch.config import PerfwatchConfig
from perfwatch.errors import ConfigError, InsufficientDataError
from perfwatch.logging_setup import setup_logging

app = typer.Typer(
    name="perfwatch",
    help="Request performance monitoring, alerting and self-optimization.",
    no_args_is_help=True,
)
console = Console(stderr=True)


def _config() -> PerfwatchConfig:
    return PerfwatchConfig.load()


def _latency(value: float | None) -> str:
    return "—" if value is None else f"{value:.0f} ms"


@app.callback()
def _main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    try:
        setup_logging(logging.DEBUG if verbose else None, default=logging.WARNING)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(2) from e


@app.command()
def replay(
    logfile: Annotated[Path, typer.Argument(help="Access log (JSON lines or CLF with request time)")],
    report_hours: Annotated[
        Optional[float], typer.Option("--report-hours", "-r", help="Also print a report over N hours")
    ] = None,
) -> None:
    """Replay an access log through a fresh monitor and show what it would have seen."""
    from perfwatch.core.context import PerformanceContext
    from perfwatch.core.replay import ReplayClock, first_timestamp, replay as run_replay

    if not logfile.is_file():
        console.print(f"[red]Log file not found:[/red] {logfile}")
        raise typer.Exit(1)

    lines = logfile.read_text(encoding="utf-8", errors="replace").splitlines()
    clock = ReplayClock(first_timestamp(lines))
    ctx = PerformanceContext.create(_config(), clock=clock)
    try:
        stats = run_replay(lines, ctx, clock)
    finally:
        ctx.stop()

    if not stats.recorded:
        console.print(f"[yellow]No requests found in {logfile}[/yellow] ({stats.skipped} lines skipped)")
        raise typer.Exit(1)

    console.print(
        f"[green]Replayed {stats.recorded} requests[/green] "
        f"({stats.skipped} skipped, {stats.snapshots} snapshots)"
    )
    if stats.first_timestamp and stats.last_timestamp:
        console.print(f"  Log span: {stats.first_timestamp.isoformat()} → {stats.last_timestamp.isoformat()}")

    current = ctx.monitor.get_current_metrics().to_dict()
    summary = ctx.monitor.get_performance_summary()
    style = {"healthy": "green", "degraded": "yellow", "critical": "red"}[summary["health"]]
    console.print(f"\n[bold]Health:[/bold] [{style}]{summary['health'].upper()}[/{style}]")
    console.print(
        f"  Last window: {current['request_count']} requests, {current['error_rate']}% errors, "
        f"avg {_latency(current['avg_latency_ms'])}, p95 {_latency(current['p95_latency_ms'])}"
    )

    alerts = ctx.monitor.get_all_alerts()
    if alerts:
        table = Table(title="Alerts")
        table.add_column("Raised")
        table.add_column("Kind", style="bold")
        table.add_column("Severity")
        table.add_column("Source")
        table.add_column("Message")
        table.add_column("Cleared")
        for a in alerts:
            sev = "[red]critical[/red]" if a.severity.value == "critical" else "[yellow]warning[/yellow]"
            table.add_row(
                a.raised_at.isoformat(),
                a.kind.value,
                sev,
                a.source.value,
                a.message,
                a.cleared_at.isoformat() if a.cleared_at else "—",
            )
        console.print(table)
    else:
        console.print("[dim]No alerts raised.[/dim]")

    if report_hours is not None:
        try:
            report = ctx.dashboard.generate_report(report_hours)
        except InsufficientDataError as exc:
            console.print(f"[yellow]No report:[/yellow] {exc}")
            return
        except ValueError as exc:
            console.print(f"[red]Invalid report window:[/red] {exc}")
            raise typer.Exit(1)
        console.print(f"\n[bold]Report {report.report_id}[/bold]")
        console.print(f"  {report.summary_text}")
        for name, direction in report.trends.items():
            console.print(f"  {name}: {direction}")
        for rec in report.recommendations:
            console.print(f"  • {rec}")


@app.command()
def config(
    as_json: Annotated[bool, typer.Option("--json", help="Print as JSON on stdout")] = False,
) -> None:
    """Show the effective configuration (config.toml, env vars, defaults)."""
    cfg = _config()
    data = {
        "config_path": str(cfg.config_path),
        "config_file_found": cfg.config_path.is_file(),
        "store": asdict(cfg.store),
        "monitor": asdict(cfg.monitor),
        "optimizer": asdict(cfg.optimizer),
    }
    if as_json:
        typer.echo(json.dumps(data, indent=2))
        return

    console.print(f"[bold]Config file:[/bold] {data['config_path']}"
                  + ("" if data["config_file_found"] else " [dim](not found, using defaults)[/dim]"))
    for section in ("store", "monitor", "optimizer"):
        table = Table(title=section)
        table.add_column("Option", style="bold")
        table.add_column("Value")
        for key, value in _flatten(data[section]):
            table.add_row(key, str(value))
        console.print(table)


def _flatten(data: dict, prefix: str = "") -> list[tuple[str, object]]:
    rows: list[tuple[str, object]] = []
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            rows.extend(_flatten(value, f"{name}."))
        else:
            rows.append((name, value))
    return rows


@app.command()
def mcp() -> None:
    """Run the MCP server on stdio."""
    from perfwatch.mcp.server import main as mcp_main

    mcp_main()


def main() -> None:
    """Entry point for the perfwatch CLI."""
    app()


if __name__ == "__main__":
    main()
