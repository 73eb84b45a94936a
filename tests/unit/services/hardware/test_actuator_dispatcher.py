import threading

import pytest

from app.domain.actuator_commands import rule_command
from app.domain.exceptions import ActuatorDispatchFailure
from app.services.hardware.actuator_dispatcher import ActuatorDispatcher


class BlockingChannel:
    def __init__(self):
        self.release = threading.Event()

    def send(self, command):
        self.release.wait(5)


def test_delivered_command_updates_tracker(dispatcher, channel, tracker):
    dispatcher.send({"action": "set_relay", "relay": "light", "state": True})

    assert channel.sent == [{"action": "set_relay", "relay": "light", "state": True}]
    assert tracker.snapshot()["relays"]["light"] is True
    assert dispatcher.stats() == {"name": "test", "sent": 1, "failed": 0}


def test_channel_error_becomes_dispatch_failure(failing_dispatcher):
    with pytest.raises(ActuatorDispatchFailure) as excinfo:
        failing_dispatcher.send({"command": "LIGHT", "state": True})

    assert excinfo.value.detail == {"command": {"command": "LIGHT", "state": True}}
    assert failing_dispatcher.failed_count == 1


def test_slow_channel_times_out():
    channel = BlockingChannel()
    dispatcher = ActuatorDispatcher(channel, timeout_seconds=0.05, name="slow")
    try:
        with pytest.raises(ActuatorDispatchFailure, match="timed out"):
            dispatcher.send({"command": "HUMID", "state": False})
    finally:
        channel.release.set()
        dispatcher.shutdown(wait=True)


def test_send_all_keeps_going_after_failures(channel, tracker):
    channel.fail_when = lambda command: command.get("id") == 1
    dispatcher = ActuatorDispatcher(channel, state_tracker=tracker)
    try:
        failures = dispatcher.send_all(
            [
                {"command": "PUMP", "id": 1, "state": False},
                {"command": "PUMP", "id": 2, "state": False},
            ]
        )
    finally:
        dispatcher.shutdown()

    assert len(failures) == 1
    assert channel.sent == [{"command": "PUMP", "id": 2, "state": False}]


def test_passthrough_command_with_text_value_is_delivered(dispatcher, channel, tracker):
    before = tracker.snapshot()

    dispatcher.send(rule_command("fan", "set_fan_speed", "high"))

    assert channel.sent == [{"action": "set_fan_speed", "device": "fan", "value": "high"}]
    assert tracker.snapshot() == before
    assert dispatcher.stats()["failed"] == 0
