from datetime import timedelta

import pytest

from app.domain.automation_config import AutomationConfig, PlantSlot
from app.services.application.watering_service import WateringService

PUMP_1_ON = {"command": "PUMP", "id": 1, "state": True}


@pytest.fixture()
def service(dispatcher, alerts):
    return WateringService(dispatcher, alerts=alerts)


def test_dry_group_starts_its_pump(service, channel, alerts, make_sample, clock):
    sample = make_sample(soil=(20, 25, 30, 60, 60, 60))

    sent = service.run(sample, AutomationConfig(), clock())

    assert sent == [PUMP_1_ON]
    assert channel.sent == [PUMP_1_ON]
    assert alerts.alerts == [("Automatic watering (pump 1)", "Average moisture: 25.0%", "info")]
    assert service.get_status() == {"last_watering": {"1": clock().isoformat()}, "running_since": {"1": clock().isoformat()}}


def test_wet_groups_are_left_alone(service, channel, make_sample, clock):
    assert service.run(make_sample(), AutomationConfig(), clock()) == []
    assert channel.sent == []


def test_invalid_readings_are_ignored(service, channel, make_sample, clock):
    # 0, 1 and 101 are disconnected or saturated sensors
    sample = make_sample(soil=(0, 1, 101, None, 60, 60))

    assert service.run(sample, AutomationConfig(), clock()) == []


def test_cooldown_is_per_pump(service, channel, make_sample, clock):
    config = AutomationConfig(cooldown_minutes=60)
    dry_both = make_sample(soil=(10, 10, 10, 10, 10, 10))

    assert len(service.run(dry_both, config, clock())) == 2
    assert service.run(dry_both, config, clock.advance(minutes=30)) == []
    assert service.run(dry_both, config, clock.advance(minutes=30)) == []  # exactly 60 min
    assert len(service.run(dry_both, config, clock.advance(seconds=1))) == 2


def test_plant_mode_waters_for_single_dry_slot(service, channel, alerts, make_sample, clock):
    config = AutomationConfig(plant_specific_enabled=True)
    sample = make_sample(soil=(60, 12, 60, 60, 60, 60))

    sent = service.run(sample, config, clock())

    assert sent == [PUMP_1_ON]
    title, message, _ = alerts.alerts[0]
    assert title == "Plant watering (pump 1)"
    assert message.startswith("1 plant(s) need water")


def test_plant_mode_skips_disabled_slots(service, make_sample):
    slots = (PlantSlot(slot_index=0, pump_id=1, enabled=False), PlantSlot(slot_index=1, pump_id=1))
    config = AutomationConfig(plant_specific_enabled=True, plant_slots=slots)

    assert service.plant_decision(1, make_sample(soil=(5, 60)), config) is None


def test_individual_thresholds(service, make_sample):
    slots = (PlantSlot(slot_index=0, pump_id=1, threshold=70),)
    config = AutomationConfig(plant_specific_enabled=True, individual_thresholds=True, plant_slots=slots)

    decision = service.plant_decision(1, make_sample(soil=(65,)), config)

    assert decision is not None
    assert decision.dry_slots == (0,)


def test_failed_pump_command_does_not_start_cooldown(failing_dispatcher, make_sample, clock):
    service = WateringService(failing_dispatcher)

    assert service.run(make_sample(soil=(10, 10, 10, 60, 60, 60)), AutomationConfig(), clock()) == []
    assert service.cooldown_elapsed(1, AutomationConfig(), clock() + timedelta(seconds=1))


def test_running_pump_is_switched_off_after_max_runtime(service, channel, alerts, make_sample, clock):
    config = AutomationConfig(pump_max_runtime_minutes=10)
    service.run(make_sample(soil=(20, 20, 20, 60, 60, 60)), config, clock())

    assert service.stop_overdue_pumps(config, clock.advance(minutes=9, seconds=59)) == []

    sent = service.stop_overdue_pumps(config, clock.advance(seconds=1))

    assert sent == [{"command": "PUMP", "id": 1, "state": False}]
    assert channel.sent[-1] == {"command": "PUMP", "id": 1, "state": False}
    assert alerts.alerts[-1][0] == "Pump 1 auto-off"
    assert alerts.alerts[-1][2] == "warning"
    assert service.get_status()["running_since"] == {}
    assert service.stop_overdue_pumps(config, clock.advance(minutes=5)) == []


def test_failed_auto_off_is_retried(service, channel, make_sample, clock):
    config = AutomationConfig(pump_max_runtime_minutes=1)
    service.run(make_sample(soil=(20, 20, 20, 60, 60, 60)), config, clock())
    channel.fail_when = lambda command: command.get("state") is False

    assert service.stop_overdue_pumps(config, clock.advance(minutes=2)) == []
    assert "1" in service.get_status()["running_since"]

    channel.fail_when = None
    assert service.stop_overdue_pumps(config, clock.advance(seconds=5)) == [{"command": "PUMP", "id": 1, "state": False}]


def test_forget_running_clears_tracking(service, make_sample, clock):
    config = AutomationConfig(pump_max_runtime_minutes=1)
    service.run(make_sample(soil=(20, 20, 20, 20, 20, 20)), config, clock())

    service.forget_running()

    assert service.stop_overdue_pumps(config, clock.advance(minutes=5)) == []
