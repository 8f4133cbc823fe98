"""Access-log parsing and replay through a PerformanceContext on log time.

Two line formats are understood:

- JSON objects with ``method``, ``path`` (or ``url``), ``status``/``status_code``,
  a duration (``duration_ms``, ``durationMs``, ``response_time_ms`` or
  ``latency_ms``) and an optional ISO ``timestamp``/``time``/``ts``.
- Common Log Format followed by a request time, either seconds
  (``0.153``, as nginx's ``$request_time``) or milliseconds (``153ms``).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from perfwatch.core.clock import utcnow
from perfwatch.models.runtime import ReplayEntry, ReplayStats

logger = logging.getLogger("perfwatch.replay")

# 127.0.0.1 - frank [10/Oct/2000:13:55:36 -0700] "GET /a HTTP/1.1" 200 2326 0.153
_CLF_RE = re.compile(
    r'^(?P<host>\S+)\s+\S+\s+(?P<user>\S+)\s+'
    r'\[(?P<time>[^\]]+)\]\s+'
    r'"(?P<request>[^"]*)"\s+'
    r'(?P<status>\d{3})\s+'
    r'(?P<size>\S+)'
    r'(?P<rest>.*)$'
)

# Trailing request time: 0.153 (seconds) or 153ms
_REQUEST_TIME_RE = re.compile(r"\s(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s)?\s*$")

_CLF_TIME = "%d/%b/%Y:%H:%M:%S %z"

_DURATION_KEYS = ("duration_ms", "durationMs", "response_time_ms", "latency_ms")
_TIME_KEYS = ("timestamp", "time", "ts", "@timestamp")


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_line(line: str) -> ReplayEntry | None:
    """Parse one access log line. Returns None for blank or unrecognized lines."""
    stripped = line.strip()
    if not stripped:
        return None
    if stripped.startswith("{"):
        return _parse_json_line(stripped)
    return _parse_clf_line(stripped)


def _parse_json_line(line: str) -> ReplayEntry | None:
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None

    duration = None
    for key in _DURATION_KEYS:
        if key in data:
            duration = data[key]
            break

    timestamp = None
    for key in _TIME_KEYS:
        if key in data:
            try:
                timestamp = _as_utc(datetime.fromisoformat(str(data[key]).replace("Z", "+00:00")))
            except (ValueError, TypeError):
                pass
            break

    session = data.get("session_id") or data.get("sessionId")
    return ReplayEntry(
        method=str(data.get("method") or ""),
        path=str(data.get("path") or data.get("url") or ""),
        status_code=data.get("status_code", data.get("statusCode", data.get("status"))),
        duration_ms=duration,
        session_id=str(session) if session is not None else None,
        timestamp=timestamp,
    )


def _parse_clf_line(line: str) -> ReplayEntry | None:
    m = _CLF_RE.match(line)
    if not m:
        return None

    parts = m.group("request").split()
    method = parts[0] if parts else ""
    path = parts[1] if len(parts) > 1 else ""

    try:
        timestamp = _as_utc(datetime.strptime(m.group("time"), _CLF_TIME))
    except ValueError:
        timestamp = None

    duration = None
    rt = _REQUEST_TIME_RE.search(m.group("rest"))
    if rt:
        value = float(rt.group("value"))
        duration = value if rt.group("unit") == "ms" else value * 1000

    user = m.group("user")
    return ReplayEntry(
        method=method,
        path=path,
        status_code=int(m.group("status")),
        duration_ms=duration,
        session_id=user if user != "-" else None,
        timestamp=timestamp,
    )


class ReplayClock:
    """Clock driven by log timestamps. Never moves backwards."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance_to(self, ts: datetime) -> None:
        if ts > self.now:
            self.now = ts


def replay(lines: Iterable[str], context, clock: ReplayClock) -> ReplayStats:
    """Feed parsed lines to the context's monitor, refreshing on log time.

    Snapshots are produced every ``metrics_interval_ms`` of log time and the
    degradation detector ticks at its own interval, so a replay exercises the
    same alerting paths as live traffic. ``context`` must have been built with
    ``clock``.
    """
    monitor = context.monitor
    optimizer = context.optimizer
    refresh_every = timedelta(milliseconds=monitor.config.metrics_interval_ms)
    check_every = timedelta(
        seconds=optimizer.config.performance_degradation.check_interval_seconds
    )

    seen = recorded = skipped = snapshots = 0
    first: datetime | None = None
    last: datetime | None = None
    next_refresh: datetime | None = None
    next_check: datetime | None = None

    for line in lines:
        seen += 1
        entry = parse_line(line)
        if entry is None:
            skipped += 1
            continue

        if entry.timestamp is not None:
            clock.advance_to(entry.timestamp)
            first = first or entry.timestamp
            last = clock()
        now = clock()
        if next_refresh is None:
            next_refresh = now + refresh_every
            next_check = now + check_every

        monitor.record_request(
            {"path": entry.path, "method": entry.method, "session_id": entry.session_id},
            {"status_code": entry.status_code},
            entry.duration_ms,
        )
        recorded += 1

        if now >= next_refresh:
            monitor.refresh()
            snapshots += 1
            next_refresh = now + refresh_every
        if now >= next_check:
            optimizer.check_degradation()
            next_check = now + check_every

    if recorded:
        monitor.refresh()
        snapshots += 1
    logger.info(
        "Replayed %d lines: %d recorded, %d skipped, %d snapshots",
        seen, recorded, skipped, snapshots,
    )
    return ReplayStats(
        lines=seen,
        recorded=recorded,
        skipped=skipped,
        snapshots=snapshots,
        first_timestamp=first,
        last_timestamp=last,
    )


def first_timestamp(lines: Iterable[str]) -> datetime | None:
    """Timestamp of the first parseable line that carries one."""
    for line in lines:
        entry = parse_line(line)
        if entry is not None and entry.timestamp is not None:
            return entry.timestamp
    return None
