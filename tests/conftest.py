"""Shared fakes: a manual clock and a settable host probe."""

import logging
from datetime import datetime, timedelta, timezone

import pytest

from perfwatch.core.monitor import PerformanceMonitor
from perfwatch.core.store import MetricStore
from perfwatch.models.runtime import ProcessMetrics

MIB = 1024 * 1024


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds=0.0, **kwargs):
        self.now += timedelta(seconds=seconds, **kwargs)


class FakeProbe:
    def __init__(self, heap=100 * MIB, limit=1024 * MIB, cpu=5.0):
        self.heap = heap
        self.limit = limit
        self.cpu = cpu
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return ProcessMetrics(heap_used_bytes=self.heap, heap_limit_bytes=self.limit, cpu_percent=self.cpu)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def store(clock, probe):
    return MetricStore(probe=probe, clock=clock)


@pytest.fixture
def monitor(store, clock):
    m = PerformanceMonitor(store=store, clock=clock)
    yield m
    m.stop()


@pytest.fixture(autouse=True)
def reset_perfwatch_logging():
    """CLI commands configure the perfwatch logger; undo it so caplog keeps working."""
    import perfwatch.logging_setup as ls

    yield
    ls._CONFIGURED = False
    logger = logging.getLogger("perfwatch")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    for name in ls._QUIET:
        logging.getLogger(name).setLevel(logging.NOTSET)
