"""Thread-per-task periodic scheduler with wake-up and cancellation."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger("perfwatch.scheduler")


class Ticker:
    """Runs ``fn`` every ``interval`` seconds on a daemon thread.

    ``interval`` may be a callable so that live config changes apply from the
    next cycle. ``wake()`` runs the next tick early. A tick that raises is
    logged and the loop continues; a tick that overruns its interval causes
    the following cycle to be skipped.

    After ``stop()`` returns no new tick starts. An in-flight tick is awaited
    for up to ``join_timeout`` seconds, unless ``stop()`` is called from the
    tick itself.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[], object],
        interval: float | Callable[[], float],
        join_timeout: float = 5.0,
    ) -> None:
        self.name = name
        self._fn = fn
        self._interval = interval if callable(interval) else (lambda: interval)
        self._join_timeout = join_timeout
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self.ticks = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            # Fresh events per run so a thread left over from a timed-out join
            # can never be revived by a restart.
            self._stop_event = threading.Event()
            self._wake_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event, self._wake_event),
                name=f"perfwatch-{self.name}",
                daemon=True,
            )
            self._thread.start()
        logger.debug("Ticker %s started", self.name)

    def wake(self) -> None:
        self._wake_event.set()

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()
            self._wake_event.set()
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(self._join_timeout)
            if thread.is_alive():
                logger.warning("Ticker %s still finishing an in-flight tick", self.name)
        logger.debug("Ticker %s stopped", self.name)

    def _run(self, stop: threading.Event, wake: threading.Event) -> None:
        skip_next = False
        while not stop.is_set():
            interval = max(0.001, float(self._interval()))
            wake.wait(interval)
            wake.clear()
            if stop.is_set():
                break
            if skip_next:
                skip_next = False
                self.skipped += 1
                logger.debug("Ticker %s skipping a cycle after overrun", self.name)
                continue

            started = time.monotonic()
            try:
                self._fn()
            except Exception:
                logger.exception("Ticker %s: tick failed", self.name)
            self.ticks += 1

            elapsed = time.monotonic() - started
            if elapsed > interval:
                skip_next = True
                logger.warning(
                    "Ticker %s overran its %.1fs interval (%.1fs)",
                    self.name, interval, elapsed,
                )
