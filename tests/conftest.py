"""
Shared test fixtures for the GrowBox automation test suite.

Provides:
- Recording stand-ins for the actuator channel, alert sink and live broadcaster
- Dispatchers wired to the recording channel
- A sample factory and a fixed clock
- In-memory SQLite database with all tables created

Usage:
    def test_example(dispatcher, channel, make_sample):
        dispatcher.send({"command": "LIGHT", "state": True})
        assert channel.sent
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

import pytest

from app.domain.actuator_commands import DeviceStateTracker
from app.domain.exceptions import DeviceError
from app.domain.sensor_sample import SensorSample
from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("infrastructure").setLevel(logging.WARNING)
logging.getLogger("app").setLevel(logging.WARNING)

NOON_UTC = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ========================== Recording doubles ==============================


class RecordingChannel:
    """Actuator channel that keeps every command; ``fail_when`` makes sends raise."""

    def __init__(self, fail_when: Callable[[dict[str, Any]], bool] | None = None):
        self.sent: list[dict[str, Any]] = []
        self.fail_when = fail_when

    def send(self, command: dict[str, Any]) -> None:
        if self.fail_when is not None and self.fail_when(command):
            raise DeviceError(f"refused {command}")
        self.sent.append(dict(command))


class RecordingAlerts:
    def __init__(self):
        self.alerts: list[tuple[str, str, str]] = []

    def send_alert(self, title: str, message: str, severity: str = "info") -> None:
        self.alerts.append((title, message, severity))

    def titles(self) -> list[str]:
        return [title for title, _, _ in self.alerts]


class RecordingBroadcaster:
    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def broadcast(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [event for event, _ in self.events]


class FakeClock:
    """Mutable clock; ``advance`` moves time forward."""

    def __init__(self, start: datetime = NOON_UTC):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        from datetime import timedelta

        self.now = self.now + timedelta(**delta)
        return self.now


# ========================== Fixtures =======================================


@pytest.fixture()
def channel():
    return RecordingChannel()


@pytest.fixture()
def tracker():
    return DeviceStateTracker()


@pytest.fixture()
def dispatcher(channel, tracker):
    d = ActuatorDispatcher(channel, timeout_seconds=2.0, name="test", state_tracker=tracker)
    yield d
    d.shutdown()


@pytest.fixture()
def alerts():
    return RecordingAlerts()


@pytest.fixture()
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_sample():
    """Factory for samples; climate zones default to 25 °C / 60 %RH."""

    def _make(
        temp: float | None = 25.0,
        humidity: float | None = 60.0,
        *,
        soil: tuple = (50.0, 50.0, 50.0, 50.0, 50.0, 50.0),
        timestamp: datetime = NOON_UTC,
        **fields: Any,
    ) -> SensorSample:
        data: dict[str, Any] = {
            "temp_bottom": temp,
            "temp_middle": temp,
            "temp_top": temp,
            "humidity_bottom": humidity,
            "humidity_middle": humidity,
            "humidity_top": humidity,
            "soil": soil,
            "timestamp": timestamp,
        }
        data.update(fields)
        return SensorSample(**data)

    return _make


# ========================== Database Fixtures ==============================


@pytest.fixture()
def db_handler():
    """In-memory SQLite database with all tables created.

    Each test gets a fresh database.
    """
    handler = SQLiteDatabaseHandler(":memory:")
    handler.create_tables()
    yield handler
    handler.close()


@pytest.fixture()
def failing_channel():
    return RecordingChannel(fail_when=lambda _command: True)


@pytest.fixture()
def failing_dispatcher(failing_channel):
    d = ActuatorDispatcher(failing_channel, timeout_seconds=1.0, name="failing")
    yield d
    d.shutdown()
