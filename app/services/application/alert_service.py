"""Queue-and-forget alert delivery.

Callers (safety interlock, VPD emergency handler, watering policy, rule
notifications) must never wait on a webhook. ``QueuedAlertDispatcher`` puts
alerts on a bounded queue and a single worker thread hands them to the real
sink. When the queue is full the alert is dropped with a warning.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import TYPE_CHECKING, Any

from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.services.protocols import AlertSink

logger = logging.getLogger(__name__)

_DROP_WARNING_INTERVAL_SECONDS = 30.0


@dataclass(frozen=True)
class QueuedAlert:
    title: str
    message: str
    severity: str
    queued_at: str


class QueuedAlertDispatcher:
    """Non-blocking :class:`AlertSink` in front of a (possibly slow) sink."""

    # Severity levels
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    def __init__(self, sink: "AlertSink | None", *, queue_size: int = 100):
        """Initialize the dispatcher.

        Args:
            sink: Delivering sink (webhook ...); None logs alerts only
            queue_size: Maximum number of pending alerts
        """
        self.sink = sink
        self._queue_size = queue_size
        self._queue: Queue[QueuedAlert] = Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

        self.sent_count = 0
        self.failed_count = 0
        self._dropped = 0
        self._drops_by_severity: dict[str, int] = defaultdict(int)
        self._last_drop_warning = 0.0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._worker_loop, name="AlertDispatcher", daemon=True)
            self._thread.start()
            logger.info("Alert dispatcher started (queue=%s)", self._queue_size)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive():
            thread.join(timeout=timeout)
        self._thread = None
        logger.info("Alert dispatcher stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    # AlertSink
    # ------------------------------------------------------------------

    def send_alert(self, title: str, message: str, severity: str = INFO) -> bool:
        """Queue an alert. Returns False when it was dropped."""
        alert = QueuedAlert(title=title, message=message, severity=str(severity), queued_at=utc_now().isoformat())
        log = logger.warning if alert.severity == self.CRITICAL else logger.info
        log("Alert [%s] %s: %s", alert.severity, title, message.replace("\n", " | "))
        try:
            self._queue.put_nowait(alert)
        except Full:
            self._record_drop(alert)
            return False
        return True

    def _record_drop(self, alert: QueuedAlert) -> None:
        self._dropped += 1
        self._drops_by_severity[alert.severity] += 1
        now = time.monotonic()
        if now - self._last_drop_warning >= _DROP_WARNING_INTERVAL_SECONDS:
            logger.warning(
                "Alert queue full (size=%d): dropped %d alert(s) so far, latest %r",
                self._queue_size,
                self._dropped,
                alert.title,
            )
            self._last_drop_warning = now

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                alert = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self.deliver(alert)
            finally:
                self._queue.task_done()

    def deliver(self, alert: QueuedAlert) -> None:
        """Hand one alert to the sink, logging (never raising) failures."""
        if self.sink is None:
            return
        try:
            self.sink.send_alert(alert.title, alert.message, alert.severity)
            self.sent_count += 1
        except Exception as exc:
            self.failed_count += 1
            logger.error("Alert delivery failed (%s): %s", alert.title, exc)

    def drain(self) -> int:
        """Deliver everything pending on the calling thread. Returns the count."""
        delivered = 0
        while True:
            try:
                alert = self._queue.get_nowait()
            except Empty:
                return delivered
            try:
                self.deliver(alert)
                delivered += 1
            finally:
                self._queue.task_done()

    def get_metrics(self) -> dict[str, Any]:
        return {
            "queue_depth": self._queue.qsize(),
            "queue_size": self._queue_size,
            "sent": self.sent_count,
            "failed": self.failed_count,
            "dropped": self._dropped,
            "drops_by_severity": dict(self._drops_by_severity),
            "running": self.is_running,
        }
