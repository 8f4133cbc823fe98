"""Best-effort webhook delivery of raised alerts."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from perfwatch.models.runtime import Alert

logger = logging.getLogger("perfwatch.notify")

_STOP = object()


class WebhookNotifier:
    """Posts alerts to a webhook from a background thread.

    ``notify`` never blocks: alerts go into a bounded queue and are dropped
    (with a log line) when it is full. Delivery failures are logged only.
    """

    def __init__(
        self,
        url: Callable[[], str | None],
        timeout: Callable[[], float] = lambda: 5.0,
        max_pending: int = 100,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self.delivered = 0

    def notify(self, alert: Alert) -> bool:
        """Queue an alert for delivery. Returns False if no webhook is configured."""
        if not self._url():
            return False
        try:
            self._queue.put_nowait(alert)
        except queue.Full:
            logger.warning("Alert webhook queue full, dropping alert %s", alert.alert_id)
            return False
        self._ensure_worker()
        return True

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(
                target=self._run, name="perfwatch-webhook", daemon=True
            )
            self._thread.start()

    def _run(self) -> None:
        with httpx.Client(transport=self._transport) as client:
            while True:
                item = self._queue.get()
                if item is _STOP:
                    return
                self._deliver(client, item)

    def _deliver(self, client: httpx.Client, alert: Alert) -> None:
        url = self._url()
        if not url:
            return
        payload = {
            "type": "performance_alert",
            "source": "perfwatch",
            "at": datetime.now(timezone.utc).isoformat(),
            "alert": alert.to_dict(),
        }
        try:
            response = client.post(url, json=payload, timeout=max(0.1, self._timeout()))
            response.raise_for_status()
            self.delivered += 1
        except httpx.HTTPError as exc:
            logger.warning("Failed to deliver alert webhook: %s", exc)

    def close(self, timeout: float = 2.0) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is None:
            return
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning("Alert webhook queue full on close; pending alerts dropped")
            return
        thread.join(timeout)
