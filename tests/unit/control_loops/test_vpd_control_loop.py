from __future__ import annotations

import pytest

from app.control_loops.vpd_control_loop import VPDControlLoop
from app.domain.automation_config import AutomationConfig
from app.domain.exceptions import NotFoundError, ValidationError
from app.domain.vpd import TargetBand, VPDConfig
from app.enums.automation import EmergencyAction
from infrastructure.database.repositories.automation import InMemoryConfigStore


@pytest.fixture()
def vpd_config():
    return VPDConfig(enabled=True)


@pytest.fixture()
def store():
    return InMemoryConfigStore()


@pytest.fixture()
def loop(vpd_config, dispatcher, store, alerts, broadcaster):
    return VPDControlLoop(vpd_config, dispatcher, config_store=store, alerts=alerts, broadcaster=broadcaster)


def test_dry_air_raises_fan_two_steps(loop, channel, make_sample, clock, store):
    result = loop.run(make_sample(26, 60), AutomationConfig(), clock())

    assert result.vpd == pytest.approx(1.344, abs=0.005)
    assert channel.sent == [{"action": "set_fan_speed", "value": 70}]
    assert loop.current_fan_speed == 70
    assert loop.config.last_update.fan_speed == 70
    assert loop.config.statistics.total_adjustments == 1
    assert store.vpd_saves == 1


def test_reading_in_band_sends_nothing(loop, channel, make_sample, clock):
    sample = make_sample(
        temp_bottom=24,
        temp_middle=25,
        temp_top=26,
        humidity_bottom=67,
        humidity_middle=68,
        humidity_top=70,
    )

    result = loop.run(sample, AutomationConfig(), clock())

    assert result.vpd == pytest.approx(1.0, abs=0.01)
    assert channel.sent == []
    assert loop.current_fan_speed == 50
    assert not result.skipped


def test_update_interval_gates_ticks(loop, channel, make_sample, clock):
    loop.run(make_sample(26, 60), AutomationConfig(), clock())
    result = loop.run(make_sample(30, 30), AutomationConfig(), clock.advance(seconds=10))

    assert result.skipped_reason == "interval"
    assert len(channel.sent) == 1


def test_hysteresis_holds_small_changes_until_min_seconds(loop, channel, make_sample, clock):
    loop.run(make_sample(26, 60), AutomationConfig(), clock())

    held = loop.run(make_sample(26, 60), AutomationConfig(), clock.advance(seconds=40))
    assert held.skipped_reason == "hysteresis"

    moved = loop.run(make_sample(26, 60), AutomationConfig(), clock.advance(seconds=30))
    assert not moved.skipped
    assert channel.sent[-1] == {"action": "set_fan_speed", "value": 85}


def test_missing_readings_skip_tick(loop, channel, make_sample, clock):
    result = loop.run(make_sample(None, None), AutomationConfig(), clock())

    assert result.skipped_reason == "no_reading"
    assert channel.sent == []


def test_emergency_high_forces_max_fan_and_alerts(loop, channel, alerts, make_sample, clock):
    result = loop.run(make_sample(30, 20), AutomationConfig(), clock())

    assert result.emergency is EmergencyAction.MAX_FAN
    assert channel.sent == [{"action": "set_fan_speed", "value": 85}]
    assert alerts.alerts[-1][2] == "critical"
    assert "too high" in alerts.alerts[-1][0]


def test_emergency_low_forces_min_fan(loop, channel, make_sample, clock):
    result = loop.run(make_sample(20, 95), AutomationConfig(), clock())

    assert result.emergency is EmergencyAction.MIN_FAN
    assert channel.sent == [{"action": "set_fan_speed", "value": 30}]
    assert loop.current_fan_speed == 30


def test_emergency_disable_turns_control_off(vpd_config, dispatcher, store, alerts, make_sample, clock, channel):
    vpd_config.emergency.critical_high.action = EmergencyAction.DISABLE
    loop = VPDControlLoop(vpd_config, dispatcher, config_store=store, alerts=alerts)

    loop.run(make_sample(30, 20), AutomationConfig(), clock())

    assert vpd_config.enabled is False
    assert store.vpd_saves == 1
    assert channel.sent == []
    assert "VPD control disabled" in alerts.titles()


def test_disabled_control_uses_on_off_fallback(dispatcher, channel, make_sample, clock):
    loop = VPDControlLoop(VPDConfig(enabled=False), dispatcher)

    loop.run(make_sample(20, 80), AutomationConfig(), clock())  # ~0.47 kPa, below vpd_min
    loop.run(make_sample(30, 40), AutomationConfig(), clock())  # ~2.5 kPa, above vpd_max
    loop.run(make_sample(25, 68), AutomationConfig(), clock())  # in band

    assert channel.sent == [
        {"command": "FAN_EXHAUST", "state": True},
        {"command": "FAN_EXHAUST", "state": False},
    ]


def test_failed_command_keeps_speed_and_config(vpd_config, failing_dispatcher, store, make_sample, clock):
    loop = VPDControlLoop(vpd_config, failing_dispatcher, config_store=store)
    result = loop.run(make_sample(26, 60), AutomationConfig(), clock())

    assert result.commands == []
    assert loop.current_fan_speed == 50
    assert vpd_config.statistics.total_adjustments == 0
    assert store.vpd_saves == 0


def test_broadcasts_vpd_update(loop, broadcaster, make_sample, clock):
    loop.run(make_sample(26, 60), AutomationConfig(), clock())

    event, payload = broadcaster.events[-1]
    assert event == "vpd_update"
    assert payload["fan_speed"] == 70
    assert payload["target"]["optimal"] == 1.0


def test_custom_target_overrides_stage(dispatcher, channel, make_sample, clock):
    config = VPDConfig(enabled=True)
    config.custom_target.enabled = True
    config.custom_target.min = 1.2
    config.custom_target.max = 1.5

    loop = VPDControlLoop(config, dispatcher)
    loop.run(make_sample(26, 60), AutomationConfig(), clock())

    # 1.34 is inside 1.2-1.5 with optimal 1.35: dead zone
    assert channel.sent == []


class TestZoneControl:
    ZONES = {
        "bottom": TargetBand(min=0.8, max=1.0, optimal=0.9),
        "middle": TargetBand(min=0.9, max=1.2, optimal=1.05),
        "top": TargetBand(min=1.0, max=1.4, optimal=1.2),
    }

    def test_humid_zone_raises_fan(self, dispatcher, channel, make_sample, clock):
        loop = VPDControlLoop(VPDConfig(enabled=True), dispatcher)
        sample = make_sample(
            temp_bottom=22,
            temp_middle=25,
            temp_top=26,
            humidity_bottom=90,
            humidity_middle=65,
            humidity_top=65,
        )

        result = loop.run_zones(sample, self.ZONES, clock())

        assert result.zone == "bottom"
        assert channel.sent == [{"command": "FAN_PWM", "value": 153}]
        assert loop.current_fan_speed == 60

    def test_dry_zone_lowers_fan(self, dispatcher, channel, make_sample, clock):
        loop = VPDControlLoop(VPDConfig(enabled=True), dispatcher)
        sample = make_sample(
            temp_bottom=24,
            temp_middle=25,
            temp_top=30,
            humidity_bottom=62,
            humidity_middle=65,
            humidity_top=40,
        )

        result = loop.run_zones(sample, self.ZONES, clock())

        assert result.zone == "top"
        assert loop.current_fan_speed == 40
        assert channel.sent == [{"command": "FAN_PWM", "value": 102}]

    def test_small_deviation_is_ignored(self, dispatcher, channel, make_sample, clock):
        loop = VPDControlLoop(VPDConfig(enabled=True), dispatcher)
        sample = make_sample(
            temp_bottom=24,
            temp_middle=25,
            temp_top=26,
            humidity_bottom=66,
            humidity_middle=65,
            humidity_top=65,
        )

        loop.run_zones(sample, self.ZONES, clock())

        assert channel.sent == []


class TestManagement:
    def test_update_config_merges_and_keeps_runtime_state(self, loop, store, make_sample, clock):
        loop.run(make_sample(26, 60), AutomationConfig(), clock())
        saves = store.vpd_saves

        updated = loop.update_config({"fan_limits": {"max": 75}, "statistics": {"total_adjustments": 99}})

        assert updated.fan_limits.min == 30
        assert updated.fan_limits.max == 75
        assert updated.statistics.total_adjustments == 1
        assert updated.last_update.fan_speed == 70
        assert store.vpd_saves == saves + 1
        assert store.get_vpd_config().fan_limits.max == 75

    def test_invalid_update_leaves_config_untouched(self, loop, store):
        with pytest.raises(ValidationError):
            loop.update_config({"fan_limits": {"min": 90}})

        assert loop.config.fan_limits.min == 30
        assert store.vpd_saves == 0

    def test_reset_statistics(self, loop, store, make_sample, clock):
        loop.run(make_sample(26, 60), AutomationConfig(), clock())

        loop.reset_statistics(clock.advance(minutes=5))

        assert loop.config.statistics.total_adjustments == 0
        assert loop.config.statistics.last_reset == clock()
        assert store.get_vpd_config().statistics.total_adjustments == 0

    def test_enable_lets_the_controller_run(self, dispatcher, channel, store, make_sample, clock):
        loop = VPDControlLoop(VPDConfig(), dispatcher, config_store=store)
        loop.set_enabled(True)

        loop.run(make_sample(26, 60), AutomationConfig(), clock())

        assert channel.sent == [{"action": "set_fan_speed", "value": 70}]
        assert store.get_vpd_config().enabled is True

    def test_analyze_suggests_set_points(self, loop, make_sample):
        report = loop.analyze(make_sample(25, 60))

        assert report["vpd"] == pytest.approx(1.27, abs=0.01)
        assert report["analysis"]["status"] == "high"
        assert report["suggestions"]["optimal_humidity"] == pytest.approx(68.4, abs=0.2)
        assert report["suggestions"]["optimal_temperature"] < 25
        assert report["auto_control"] == {"enabled": True, "grow_stage": "vegetative"}

    def test_analyze_without_climate_readings(self, loop, make_sample):
        with pytest.raises(NotFoundError):
            loop.analyze(make_sample(None, None))
