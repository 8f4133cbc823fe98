"""Request/connection recording, snapshot refresh and threshold alerting."""

from __future__ import annotations

import logging
import math
import threading
import uuid
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from perfwatch.config import MonitorConfig, ThresholdConfig, merge_options
from perfwatch.core.clock import Clock, utcnow
from perfwatch.core.notify import WebhookNotifier
from perfwatch.core.scheduler import Ticker
from perfwatch.core.store import MetricStore
from perfwatch.errors import MalformedSampleIgnored
from perfwatch.models.enums import AlertKind, AlertSource, HealthStatus, Severity
from perfwatch.models.runtime import Alert, MetricSnapshot, RequestSample

logger = logging.getLogger("perfwatch.monitor")


# kind -> (ThresholdSet attribute, metric extractor, label, value format)
_CHECKS: dict[AlertKind, tuple[str, Callable[[MetricSnapshot], float], str, str]] = {
    AlertKind.LATENCY: ("latency", lambda s: s.p95_latency_ms, "p95 latency", "{:.0f}ms"),
    AlertKind.ERROR_RATE: ("error_rate", lambda s: s.error_rate, "Error rate", "{:.1f}%"),
    AlertKind.MEMORY: ("memory", lambda s: s.heap_fraction, "Heap usage", "{:.0%}"),
    AlertKind.CONNECTION_SATURATION: (
        "connections", lambda s: float(s.open_connections), "Open connections", "{:.0f}",
    ),
}


# --- Request metadata ---


def _field(meta: Any, *names: str) -> Any:
    """First non-None key (for mappings) or attribute (for objects) among names."""
    if meta is None:
        return None
    for name in names:
        if isinstance(meta, Mapping):
            value = meta.get(name)
        else:
            value = getattr(meta, name, None)
        if value is not None:
            return value
    return None


def _coerce_text(field_name: str, raw: Any, default: str) -> str:
    if raw is None:
        raise MalformedSampleIgnored(field_name, raw)
    text = str(raw).strip()
    if not text:
        raise MalformedSampleIgnored(field_name, raw)
    return text


def _coerce_status(raw: Any) -> int:
    if isinstance(raw, bool):
        raise MalformedSampleIgnored("status_code", raw)
    try:
        status = int(raw)
    except (TypeError, ValueError):
        raise MalformedSampleIgnored("status_code", raw) from None
    if not 0 <= status <= 999:
        raise MalformedSampleIgnored("status_code", raw)
    return status


def _coerce_duration(raw: Any) -> float:
    if isinstance(raw, bool):
        raise MalformedSampleIgnored("duration_ms", raw)
    try:
        duration = float(raw)
    except (TypeError, ValueError):
        raise MalformedSampleIgnored("duration_ms", raw) from None
    if math.isnan(duration) or math.isinf(duration) or duration < 0:
        raise MalformedSampleIgnored("duration_ms", raw)
    return duration


def build_sample(
    request_meta: Any,
    response_meta: Any,
    duration_ms: Any,
    timestamp: datetime,
) -> RequestSample:
    """Build a RequestSample, substituting defaults for unreadable fields.

    Metadata may be mappings or objects with attributes. Each substitution is
    logged at debug level; this function never raises MalformedSampleIgnored.
    """

    def read(fn: Callable[[], Any], default: Any) -> Any:
        try:
            return fn()
        except MalformedSampleIgnored as exc:
            logger.debug("%s; recording default %r", exc, default)
            return default

    path = read(lambda: _coerce_text("path", _field(request_meta, "path", "url"), ""), "")
    method = read(
        lambda: _coerce_text("method", _field(request_meta, "method"), "UNKNOWN").upper(),
        "UNKNOWN",
    )
    status = read(
        lambda: _coerce_status(_field(response_meta, "status_code", "statusCode", "status")),
        0,
    )
    duration = read(lambda: _coerce_duration(duration_ms), 0.0)

    session_id = _field(request_meta, "session_id", "sessionId")
    if session_id is None:
        session_id = _field(_field(request_meta, "session"), "id")

    return RequestSample(
        path=path,
        method=method,
        status_code=status,
        duration_ms=duration,
        session_id=str(session_id) if session_id is not None else None,
        timestamp=timestamp,
    )


# --- Monitor ---


class PerformanceMonitor:
    """Owns the MetricStore and the Alert lifecycle.

    Request and connection entry points are safe to call from request
    handlers: they never raise and never compute aggregates inline.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        store: MetricStore | None = None,
        clock: Clock = utcnow,
        notifier: WebhookNotifier | None = None,
    ) -> None:
        self._config = config or MonitorConfig()
        self._clock = clock
        self._store = store if store is not None else MetricStore(clock=clock)
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._alerts: dict[str, Alert] = {}
        self._current: MetricSnapshot | None = None
        self._current_version = 0
        self._started_at = clock()
        self._ticker = Ticker(
            "monitor-refresh",
            self.refresh,
            lambda: self._config.metrics_interval_seconds,
        )
        self._notifier = notifier or WebhookNotifier(
            url=lambda: self._config.webhook_url,
            timeout=lambda: self._config.webhook_timeout_seconds,
        )

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def store(self) -> MetricStore:
        return self._store

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def running(self) -> bool:
        return self._ticker.running

    # --- Lifecycle ---

    def start(self) -> None:
        self._ticker.start()
        logger.info(
            "Performance monitoring started (interval=%dms, alerting=%s)",
            self._config.metrics_interval_ms, self._config.alerting_enabled,
        )

    def stop(self) -> None:
        """Halt periodic refresh. Idempotent; safe while a refresh is running."""
        was_running = self._ticker.running
        self._ticker.stop()
        self._notifier.close()
        if was_running:
            logger.info("Performance monitoring stopped")

    # --- Event entry points (hot path) ---

    def record_request(self, request_meta: Any, response_meta: Any, duration_ms: Any) -> None:
        try:
            sample = build_sample(request_meta, response_meta, duration_ms, self._clock())
            self._store.record(sample)
            if self._store.version - self._current_version >= self._config.snapshot_every_requests:
                self._ticker.wake()
        except Exception:
            logger.warning("Dropped request sample", exc_info=True)

    def on_connection_open(self) -> None:
        try:
            self._store.connection_opened()
        except Exception:
            logger.warning("Failed to count opened connection", exc_info=True)

    def on_connection_close(self) -> None:
        try:
            self._store.connection_closed()
        except Exception:
            logger.warning("Failed to count closed connection", exc_info=True)

    def on_session_end(self, session_id: Any) -> None:
        """Stop counting a session. Its next request opens it again."""
        if session_id is None:
            return
        try:
            if not self._store.session_ended(str(session_id)):
                logger.debug("Session %s ended but was not open", session_id)
        except Exception:
            logger.warning("Failed to end session %s", session_id, exc_info=True)

    # --- Snapshots ---

    def refresh(self) -> MetricSnapshot:
        """Produce a new snapshot and evaluate alert thresholds against it."""
        with self._refresh_lock:
            version = self._store.version
            snap = self._store.snapshot()
            with self._lock:
                if self._current is None or snap.window_end >= self._current.window_end:
                    self._current = snap
                    self._current_version = version
                current = self._current
            self.evaluate(snap)
        return current

    def get_current_metrics(self) -> MetricSnapshot:
        """Latest snapshot, recomputed if stale or if samples arrived since."""
        with self._lock:
            current = self._current
            version = self._current_version
        if current is not None and version == self._store.version:
            age = self._clock() - current.window_end
            if age < timedelta(milliseconds=self._config.metrics_interval_ms):
                return current
        return self.refresh()

    def get_metrics_history(self, since: datetime | None = None) -> list[MetricSnapshot]:
        return self._store.history(since)

    # --- Alerting ---

    def evaluate(self, snap: MetricSnapshot) -> None:
        """Raise, re-grade or clear threshold alerts for one snapshot."""
        thresholds = self._config.thresholds
        for kind, (attr, extract, label, fmt) in _CHECKS.items():
            threshold: ThresholdConfig = getattr(thresholds, attr)
            value = extract(snap)
            if not math.isnan(value) and value >= threshold.warning:
                self._on_breach(kind, threshold, value, label, fmt)
            else:
                self._on_recover(kind)

    def _on_breach(
        self, kind: AlertKind, threshold: ThresholdConfig, value: float, label: str, fmt: str
    ) -> None:
        critical = value >= threshold.critical
        severity = Severity.CRITICAL if critical else Severity.WARNING
        limit = threshold.critical if critical else threshold.warning
        message = (
            f"{label} ({fmt.format(value)}) exceeds {severity.value} "
            f"threshold ({fmt.format(limit)})"
        )

        with self._lock:
            existing = self._active_alert(kind)
            if existing is not None:
                # Any source escalates to critical; only threshold alerts are downgraded.
                regrade = existing.source is AlertSource.THRESHOLD or critical
                if regrade and existing.severity is not severity:
                    regraded = replace(
                        existing, severity=severity, value=value, threshold=limit, message=message
                    )
                    self._alerts[existing.alert_id] = regraded
                    logger.warning("Alert %s is now %s: %s", existing.alert_id, severity.value, message)
                return
            if not self._config.alerting_enabled:
                logger.debug("Alerting disabled; not raising: %s", message)
                return
            alert = self._new_alert(kind, severity, message, value, limit, AlertSource.THRESHOLD)
        self._announce(alert)

    def _on_recover(self, kind: AlertKind) -> None:
        with self._lock:
            existing = self._active_alert(kind)
            if existing is None or existing.source is not AlertSource.THRESHOLD:
                return
            self._alerts[existing.alert_id] = replace(existing, cleared_at=self._clock())
        logger.info("Alert %s cleared: %s back within threshold", existing.alert_id, kind.value)

    def _active_alert(self, kind: AlertKind) -> Alert | None:
        """Caller holds the lock."""
        for alert in self._alerts.values():
            if alert.kind is kind and alert.active:
                return alert
        return None

    def _new_alert(
        self,
        kind: AlertKind,
        severity: Severity,
        message: str,
        value: float,
        threshold: float,
        source: AlertSource,
    ) -> Alert:
        """Caller holds the lock."""
        alert = Alert(
            alert_id=f"{kind.value}-{uuid.uuid4().hex[:12]}",
            kind=kind,
            severity=severity,
            message=message,
            raised_at=self._clock(),
            value=value,
            threshold=threshold,
            source=source,
        )
        self._alerts[alert.alert_id] = alert
        return alert

    def _announce(self, alert: Alert) -> None:
        if alert.severity is Severity.CRITICAL:
            logger.error("Performance alert [%s]: %s", alert.kind.value, alert.message)
        else:
            logger.warning("Performance alert [%s]: %s", alert.kind.value, alert.message)
        self._notifier.notify(alert)

    def raise_alert(
        self,
        kind: AlertKind,
        severity: Severity,
        message: str,
        value: float = 0.0,
        threshold: float = 0.0,
        source: AlertSource = AlertSource.MANUAL,
    ) -> Alert | None:
        """Raise an alert on behalf of another component.

        Returns the already-active alert of that kind if there is one, or None
        when alerting is disabled.
        """
        with self._lock:
            existing = self._active_alert(kind)
            if existing is not None:
                return existing
            if not self._config.alerting_enabled:
                logger.debug("Alerting disabled; not raising: %s", message)
                return None
            alert = self._new_alert(kind, severity, message, value, threshold, source)
        self._announce(alert)
        return alert

    def clear_alert(self, alert_id: str, reason: str = "cleared") -> bool:
        """Clear an active alert by id. Returns False if unknown or already cleared."""
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or not alert.active:
                return False
            cleared = replace(alert, cleared_at=self._clock())
            self._alerts[alert_id] = cleared
        logger.info(
            "Alert %s %s after %.0fs",
            alert_id, reason, (cleared.cleared_at - cleared.raised_at).total_seconds(),
        )
        return True

    def resolve_alert(self, alert_id: str) -> bool:
        """Manual clear from an operator."""
        return self.clear_alert(alert_id, reason="resolved")

    def get_active_alerts(self) -> list[Alert]:
        with self._lock:
            return [a for a in self._alerts.values() if a.active]

    def get_all_alerts(self) -> list[Alert]:
        with self._lock:
            return list(self._alerts.values())

    def purge_alerts(self, older_than: datetime) -> int:
        """Forget cleared alerts that were cleared before `older_than`."""
        with self._lock:
            stale = [
                a.alert_id for a in self._alerts.values()
                if a.cleared_at is not None and a.cleared_at < older_than
            ]
            for alert_id in stale:
                del self._alerts[alert_id]
        return len(stale)

    # --- Summary & config ---

    def health(self) -> HealthStatus:
        active = self.get_active_alerts()
        if any(a.severity is Severity.CRITICAL for a in active):
            return HealthStatus.CRITICAL
        if active:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def uptime_ms(self) -> int:
        return int((self._clock() - self._started_at).total_seconds() * 1000)

    def get_performance_summary(self) -> dict:
        active = self.get_active_alerts()
        with self._lock:
            total = len(self._alerts)
            current = self._current
        return {
            "health": self.health().value,
            "active_alerts": len(active),
            "total_alerts": total,
            "uptime_ms": self.uptime_ms(),
            "current": current.to_dict() if current else None,
        }

    def update_config(self, partial: Mapping[str, Any]) -> MonitorConfig:
        """Merge recognized options into the live config and return the result."""
        with self._lock:
            old = self._config
            self._config = merge_options(old, partial)
            new = self._config
        if new.metrics_interval_ms != old.metrics_interval_ms:
            self._ticker.wake()
        logger.info("Performance monitoring configuration updated: %s", dict(partial))
        return new
