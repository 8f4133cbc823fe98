"""Tests for the Ticker periodic runner."""

import logging
import threading
import time

from perfwatch.core.scheduler import Ticker


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestTicker:
    def test_ticks_periodically(self):
        calls = []
        ticker = Ticker("t", lambda: calls.append(1), 0.01)
        ticker.start()
        try:
            assert _wait_for(lambda: len(calls) >= 3)
        finally:
            ticker.stop()
        assert not ticker.running

    def test_start_and_stop_idempotent(self):
        ticker = Ticker("t", lambda: None, 60)
        ticker.start()
        ticker.start()
        assert ticker.running
        ticker.stop()
        ticker.stop()
        assert not ticker.running

    def test_stop_without_start(self):
        Ticker("t", lambda: None, 60).stop()

    def test_wake_runs_early(self):
        ran = threading.Event()
        ticker = Ticker("t", ran.set, 60)
        ticker.start()
        try:
            ticker.wake()
            assert ran.wait(2.0)
        finally:
            ticker.stop()

    def test_no_tick_after_stop(self):
        calls = []
        ticker = Ticker("t", lambda: calls.append(1), 0.01)
        ticker.start()
        _wait_for(lambda: calls)
        ticker.stop()
        seen = len(calls)
        time.sleep(0.05)
        assert len(calls) == seen

    def test_failing_tick_logged_and_loop_continues(self, caplog):
        calls = []

        def boom():
            calls.append(1)
            raise RuntimeError("boom")

        ticker = Ticker("t", boom, 0.01)
        with caplog.at_level(logging.ERROR, logger="perfwatch.scheduler"):
            ticker.start()
            try:
                assert _wait_for(lambda: len(calls) >= 2)
            finally:
                ticker.stop()
        assert "tick failed" in caplog.text

    def test_interval_callable_read_each_cycle(self):
        interval = {"value": 60.0}
        calls = []
        ticker = Ticker("t", lambda: calls.append(1), lambda: interval["value"])
        ticker.start()
        try:
            interval["value"] = 0.01
            ticker.wake()
            assert _wait_for(lambda: len(calls) >= 3)
        finally:
            ticker.stop()

    def test_restart(self):
        calls = []
        ticker = Ticker("t", lambda: calls.append(1), 60)
        ticker.start()
        ticker.stop()
        ticker.start()
        try:
            ticker.wake()
            assert _wait_for(lambda: calls)
        finally:
            ticker.stop()
