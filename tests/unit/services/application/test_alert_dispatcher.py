import time

from app.services.application.alert_service import QueuedAlertDispatcher


class FlakySink:
    def __init__(self, fail_titles=()):
        self.delivered = []
        self.fail_titles = set(fail_titles)

    def send_alert(self, title, message, severity):
        if title in self.fail_titles:
            raise ConnectionError("webhook down")
        self.delivered.append((title, message, severity))


def test_send_alert_only_queues():
    sink = FlakySink()
    dispatcher = QueuedAlertDispatcher(sink, queue_size=5)

    assert dispatcher.send_alert("Hot", "29 °C", "warning") is True

    assert sink.delivered == []
    assert dispatcher.get_metrics()["queue_depth"] == 1


def test_full_queue_drops_and_counts():
    dispatcher = QueuedAlertDispatcher(FlakySink(), queue_size=2)

    results = [dispatcher.send_alert(f"a{i}", "m", "critical") for i in range(4)]

    assert results == [True, True, False, False]
    metrics = dispatcher.get_metrics()
    assert metrics["dropped"] == 2
    assert metrics["drops_by_severity"] == {"critical": 2}


def test_drain_delivers_in_order_and_isolates_failures():
    sink = FlakySink(fail_titles={"second"})
    dispatcher = QueuedAlertDispatcher(sink, queue_size=10)
    for title in ("first", "second", "third"):
        dispatcher.send_alert(title, "msg")

    assert dispatcher.drain() == 3

    assert [title for title, _, _ in sink.delivered] == ["first", "third"]
    metrics = dispatcher.get_metrics()
    assert metrics["sent"] == 2
    assert metrics["failed"] == 1
    assert metrics["queue_depth"] == 0


def test_without_sink_alerts_are_only_logged():
    dispatcher = QueuedAlertDispatcher(None)
    dispatcher.send_alert("t", "m")

    assert dispatcher.drain() == 1
    assert dispatcher.get_metrics()["sent"] == 0


def test_worker_delivers_in_background():
    sink = FlakySink()
    dispatcher = QueuedAlertDispatcher(sink)
    dispatcher.start()
    try:
        dispatcher.send_alert("Watering", "pump 1", "info")
        deadline = time.monotonic() + 5
        while not sink.delivered and time.monotonic() < deadline:
            time.sleep(0.01)
        assert dispatcher.is_running
    finally:
        dispatcher.stop()

    assert sink.delivered == [("Watering", "pump 1", "info")]
    assert not dispatcher.is_running
