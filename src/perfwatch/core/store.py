"""In-memory rolling window of request samples, connections, sessions and snapshots."""

from __future__ import annotations

import logging
import math
import threading
import uuid
from collections import deque
from datetime import datetime, timedelta

from perfwatch.config import StoreConfig
from perfwatch.core.clock import Clock, utcnow
from perfwatch.core.host import HostProbe, ProcessProbe
from perfwatch.models.runtime import MetricSnapshot, RequestSample

logger = logging.getLogger("perfwatch.store")


def percentile(sorted_values: list[float], p: float) -> float:
    """Nearest-rank percentile of an ascending list; NaN when empty."""
    if not sorted_values:
        return math.nan
    index = math.ceil(len(sorted_values) * p) - 1
    return sorted_values[max(0, min(index, len(sorted_values) - 1))]


class MetricStore:
    """Thread-safe store for the request window and snapshot history.

    ``record`` and the connection methods run on the request path and only
    hold the lock for an append or an increment. Sorting for percentiles in
    ``snapshot`` happens outside the lock.
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        probe: HostProbe | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._config = config or StoreConfig()
        self._probe = probe if probe is not None else ProcessProbe()
        self._clock = clock
        self._lock = threading.Lock()
        self._samples: deque[RequestSample] = deque()
        self._snapshots: deque[MetricSnapshot] = deque()
        self._connections = 0
        self._session_starts: dict[str, datetime] = {}
        self._version = 0

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def probe(self) -> HostProbe:
        return self._probe

    @property
    def version(self) -> int:
        """Number of samples ever recorded. Changes whenever the window does."""
        return self._version

    @property
    def sample_count(self) -> int:
        return len(self._samples)

    @property
    def open_connections(self) -> int:
        return self._connections

    @property
    def open_sessions(self) -> int:
        return len(self._session_starts)

    # --- Request samples ---

    def record(self, sample: RequestSample) -> None:
        with self._lock:
            self._samples.append(sample)
            if sample.session_id and sample.session_id not in self._session_starts:
                self._session_starts[sample.session_id] = sample.timestamp
            self._version += 1
            self._evict_samples(self._clock())

    def samples(self) -> list[RequestSample]:
        """Copy of the retained samples, oldest first."""
        with self._lock:
            return list(self._samples)

    def _evict_samples(self, now: datetime) -> int:
        """Drop samples beyond the count cap or older than max age. Caller holds the lock."""
        evicted = 0
        while len(self._samples) > self._config.max_samples:
            self._samples.popleft()
            evicted += 1
        cutoff = now - timedelta(seconds=self._config.max_age_seconds)
        while self._samples and self._samples[0].timestamp < cutoff:
            self._samples.popleft()
            evicted += 1
        return evicted

    # --- Connections ---

    def connection_opened(self) -> None:
        with self._lock:
            self._connections += 1

    def connection_closed(self) -> None:
        with self._lock:
            if self._connections > 0:
                self._connections -= 1

    # --- Sessions ---

    def session_ended(self, session_id: str) -> bool:
        """Forget an open session. False when it was not being tracked."""
        with self._lock:
            return self._session_starts.pop(session_id, None) is not None

    def _prune_sessions(self) -> int:
        """Drop sessions with no request left in the window. Caller holds the lock."""
        live = {s.session_id for s in self._samples if s.session_id}
        stale = [sid for sid in self._session_starts if sid not in live]
        for sid in stale:
            del self._session_starts[sid]
        return len(stale)

    # --- Snapshots ---

    def snapshot(self) -> MetricSnapshot:
        """Aggregate the current window and append the result to the history."""
        now = self._clock()
        with self._lock:
            self._evict_samples(now)
            self._prune_sessions()
            window = list(self._samples)
            connections = self._connections
            session_ages = [
                (now - start).total_seconds() * 1000 for start in self._session_starts.values()
            ]

        host = self._probe()
        window_seconds = self._config.max_age_seconds
        durations = sorted(s.duration_ms for s in window)
        count = len(durations)

        snap = MetricSnapshot(
            snapshot_id=uuid.uuid4().hex,
            window_start=now - timedelta(seconds=window_seconds),
            window_end=now,
            request_count=count,
            error_count=sum(1 for s in window if s.is_error),
            p50_latency_ms=percentile(durations, 0.50),
            p95_latency_ms=percentile(durations, 0.95),
            p99_latency_ms=percentile(durations, 0.99),
            avg_latency_ms=sum(durations) / count if count else math.nan,
            min_latency_ms=durations[0] if count else math.nan,
            max_latency_ms=durations[-1] if count else math.nan,
            requests_per_second=count / window_seconds,
            open_connections=connections,
            active_sessions=len(session_ages),
            avg_session_duration_ms=sum(session_ages) / len(session_ages) if session_ages else math.nan,
            heap_used_bytes=host.heap_used_bytes,
            heap_limit_bytes=host.heap_limit_bytes,
            cpu_usage_percent=host.cpu_percent,
        )

        with self._lock:
            self._snapshots.append(snap)
            self._evict_snapshots(now)
        return snap

    def _evict_snapshots(self, now: datetime) -> int:
        evicted = 0
        while len(self._snapshots) > self._config.max_snapshots:
            self._snapshots.popleft()
            evicted += 1
        cutoff = now - timedelta(hours=self._config.snapshot_retention_hours)
        while self._snapshots and self._snapshots[0].window_end < cutoff:
            self._snapshots.popleft()
            evicted += 1
        return evicted

    def latest(self) -> MetricSnapshot | None:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def history(self, since: datetime | None = None) -> list[MetricSnapshot]:
        """Retained snapshots, oldest first, optionally only those ending at or after `since`."""
        with self._lock:
            snaps = list(self._snapshots)
        if since is None:
            return snaps
        return [s for s in snaps if s.window_end >= since]

    # --- Maintenance ---

    def trim(self) -> tuple[int, int]:
        """Enforce all caps now. Returns (evicted samples, evicted snapshots)."""
        now = self._clock()
        with self._lock:
            samples = self._evict_samples(now)
            self._prune_sessions()
            snapshots = self._evict_snapshots(now)
        if samples or snapshots:
            logger.debug("Trimmed %d samples and %d snapshots", samples, snapshots)
        return samples, snapshots
