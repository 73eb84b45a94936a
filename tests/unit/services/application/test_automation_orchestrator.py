from __future__ import annotations

import time
from datetime import timedelta

import pytest

from app.control_loops.vpd_control_loop import VPDControlLoop
from app.domain.actuator_commands import all_stop_commands
from app.domain.automation_config import AutomationConfig
from app.domain.exceptions import ValidationError
from app.domain.vpd import VPDConfig
from app.services.application.automation_engine import AutomationEngine
from app.services.application.automation_orchestrator import AutomationOrchestrator
from app.services.application.light_scheduler import LightScheduler
from app.services.application.watering_service import WateringService
from app.services.hardware.safety_service import SafetyInterlock
from infrastructure.database.repositories.automation import InMemoryConfigStore, InMemoryRuleStore

LIGHT_ON = {"command": "LIGHT", "state": True}


@pytest.fixture()
def config_store():
    return InMemoryConfigStore()


@pytest.fixture()
def build_orchestrator(dispatcher, tracker, alerts, broadcaster, clock, config_store):
    def _build(config: AutomationConfig | None = None, **overrides) -> AutomationOrchestrator:
        config = config or AutomationConfig(timezone="UTC")
        holder: dict[str, AutomationOrchestrator] = {}

        def provider() -> AutomationConfig:
            return holder["orchestrator"].get_automation_config()

        parts = {
            "engine": AutomationEngine(InMemoryRuleStore(), dispatcher, config_provider=provider, clock=clock),
            "safety": SafetyInterlock(dispatcher, provider, alerts=alerts, broadcaster=broadcaster),
            "vpd_loop": VPDControlLoop(VPDConfig(enabled=True), dispatcher),
            "light_scheduler": LightScheduler(dispatcher),
            "watering": WateringService(dispatcher, alerts=alerts),
        }
        parts.update(overrides)
        orchestrator = AutomationOrchestrator(
            **parts,
            manual_dispatcher=dispatcher,
            automation_config=config,
            config_store=config_store,
            state_tracker=tracker,
            broadcaster=broadcaster,
            clock=clock,
        )
        holder["orchestrator"] = orchestrator
        return orchestrator

    return _build


def test_full_tick_runs_light_vpd_and_watering(build_orchestrator, channel, broadcaster, make_sample, clock):
    orchestrator = build_orchestrator()
    sample = make_sample(26, 60, soil=(10, 10, 10, 60, 60, 60))

    report = orchestrator.process_sample(sample)

    assert report.stopped_by is None
    assert report.light_commands == [LIGHT_ON]
    assert report.vpd.fan_speed == 70
    assert report.watering_commands == [{"command": "PUMP", "id": 1, "state": True}]
    assert channel.sent == report.commands
    assert "actuator_state_update" in broadcaster.names()
    assert orchestrator.engine.latest_sample is sample


def test_safety_trip_stops_the_tick(build_orchestrator, channel, make_sample):
    orchestrator = build_orchestrator()

    report = orchestrator.process_sample(make_sample(45, 60, soil=(10,) * 6))

    assert report.stopped_by == "safety"
    assert report.safety.tripped
    assert channel.sent == all_stop_commands()
    assert report.commands == []


def test_safety_runs_during_manual_override(build_orchestrator, channel, make_sample, clock):
    orchestrator = build_orchestrator()
    orchestrator.notify_manual_action()

    report = orchestrator.process_sample(make_sample(45, 60))

    assert report.stopped_by == "safety"
    assert channel.sent == all_stop_commands()


def test_manual_override_pauses_policies(build_orchestrator, channel, make_sample, clock):
    orchestrator = build_orchestrator()
    until = orchestrator.notify_manual_action()
    assert until == clock() + timedelta(minutes=30)

    report = orchestrator.process_sample(make_sample(26, 60), clock.advance(minutes=29))
    assert report.stopped_by == "manual_override"
    assert channel.sent == []

    report = orchestrator.process_sample(make_sample(26, 60), clock.advance(minutes=1))
    assert report.stopped_by is None
    assert LIGHT_ON in channel.sent


def test_manual_command_is_sent_and_arms_override(build_orchestrator, channel, clock):
    orchestrator = build_orchestrator()

    until = orchestrator.send_manual_command({"command": "HUMID", "state": True})

    assert channel.sent == [{"command": "HUMID", "state": True}]
    assert until == clock() + timedelta(minutes=30)
    assert orchestrator.is_manual_override_active()
    assert orchestrator.get_device_states()["relays"]["humidifier"] is True


def test_missing_climate_readings_skip_vpd_only(build_orchestrator, channel, make_sample):
    orchestrator = build_orchestrator()

    report = orchestrator.process_sample(make_sample(None, None))

    assert report.vpd is None
    assert report.vpd_skipped_reason == "no_valid_climate_readings"
    assert report.light_commands == [LIGHT_ON]


def test_zone_mode_uses_zone_bands(build_orchestrator, channel, make_sample):
    orchestrator = build_orchestrator()
    orchestrator.update_automation_config({"plant_specific": {"zone_based_vpd": True}})

    report = orchestrator.process_sample(make_sample(26, 60))

    # 1.34 kPa everywhere: bottom is furthest above its 0.8-1.0 band
    assert report.vpd.zone == "bottom"
    assert {"command": "FAN_PWM", "value": 102} in channel.sent


def test_failing_step_does_not_starve_others(build_orchestrator, channel, make_sample):
    class ExplodingWatering(WateringService):
        def run(self, sample, config, now):
            raise RuntimeError("sensor bus fault")

    orchestrator = build_orchestrator(watering=ExplodingWatering(None))

    report = orchestrator.process_sample(make_sample(26, 60))

    assert report.errors == ["watering: sensor bus fault"]
    assert report.light_commands == [LIGHT_ON]
    assert orchestrator.error_count == 1


def test_full_queue_drops_newest_sample(build_orchestrator, make_sample):
    orchestrator = build_orchestrator(sample_queue_size=1)

    assert orchestrator.submit_sample(make_sample()) is True
    assert orchestrator.submit_sample(make_sample()) is False
    assert orchestrator.get_status()["dropped"] == 1


def test_worker_consumes_queued_samples(build_orchestrator, make_sample):
    orchestrator = build_orchestrator()
    orchestrator.start()
    try:
        orchestrator.submit_sample(make_sample())
        deadline = time.monotonic() + 5
        while orchestrator.processed_count < 1 and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        orchestrator.stop()

    assert orchestrator.processed_count == 1
    assert not orchestrator.is_running


def test_config_update_is_merged_and_persisted(build_orchestrator, config_store):
    orchestrator = build_orchestrator()

    updated = orchestrator.update_automation_config({"dry_threshold": 25, "growth_stage_light": {"enabled": True}})

    assert updated.dry_threshold == 25
    assert updated.stage_light_enabled
    assert updated.timezone == "UTC"
    assert config_store.automation_saves == 1
    assert orchestrator.safety.config_provider() is updated


def test_invalid_config_update_is_rejected(build_orchestrator, config_store):
    orchestrator = build_orchestrator()

    with pytest.raises(ValidationError):
        orchestrator.update_automation_config({"vpd_min": 2.0})

    assert orchestrator.get_automation_config().vpd_min == 0.8
    assert config_store.automation_saves == 0


def test_status_aggregates_components(build_orchestrator, make_sample):
    orchestrator = build_orchestrator()
    orchestrator.process_sample(make_sample(26, 60))

    status = orchestrator.get_status()

    assert status["processed"] == 1
    assert status["manual_override_active"] is False
    assert status["last_report"]["light_commands"] == [LIGHT_ON]
    assert status["vpd"]["current_fan_speed"] == 70
    assert set(status) >= {"engine", "safety", "watering", "queue_depth"}


STRATIFIED = {
    "temp_bottom": 24,
    "temp_middle": 25,
    "temp_top": 26,
    "humidity_bottom": 55,
    "humidity_middle": 58,
    "humidity_top": 60,
    "gas": 100,
}


def fan_speed_commands(commands):
    return [c for c in commands if c.get("action") == "set_fan_speed"]


def test_stratified_sample_averages_zones_before_control(build_orchestrator, channel, make_sample):
    orchestrator = build_orchestrator()

    report = orchestrator.process_sample(make_sample(**STRATIFIED))

    # 25 °C / 57.7 %RH is 1.34 kPa: above the 0.8-1.2 band, two steps up
    assert report.vpd.vpd == pytest.approx(1.34, abs=0.01)
    assert report.vpd.analysis.in_range is False
    assert fan_speed_commands(channel.sent) == [{"action": "set_fan_speed", "value": 70}]
    assert orchestrator.vpd_loop.current_fan_speed == 70


def test_vpd_near_optimum_sends_no_fan_command(build_orchestrator, channel, make_sample):
    orchestrator = build_orchestrator()
    humid = dict(STRATIFIED, humidity_bottom=67, humidity_middle=68.5, humidity_top=70)

    report = orchestrator.process_sample(make_sample(**humid))

    assert report.vpd.vpd == pytest.approx(1.0, abs=0.02)
    assert report.vpd.analysis.in_range is True
    assert report.vpd.commands == []
    assert fan_speed_commands(channel.sent) == []
    assert orchestrator.vpd_loop.current_fan_speed == 50


def test_hot_top_zone_trips_safety_only(build_orchestrator, channel, alerts, make_sample):
    orchestrator = build_orchestrator()

    report = orchestrator.process_sample(make_sample(**dict(STRATIFIED, temp_top=42)))

    assert report.stopped_by == "safety"
    assert channel.sent == all_stop_commands()
    assert [severity for _, _, severity in alerts.alerts] == ["critical"]
    assert report.vpd is None
    assert orchestrator.vpd_loop.last_update is None
    assert orchestrator.engine.pass_count == 0
    assert report.commands == []


def test_pump_is_switched_off_after_max_runtime_even_during_override(build_orchestrator, channel, make_sample, clock):
    orchestrator = build_orchestrator()
    dry = make_sample(26, 60, soil=(10, 10, 10, 60, 60, 60))
    orchestrator.process_sample(dry)
    assert {"command": "PUMP", "id": 1, "state": True} in channel.sent

    orchestrator.notify_manual_action(clock.advance(minutes=1))
    report = orchestrator.process_sample(dry, clock.advance(minutes=9))

    assert report.stopped_by == "manual_override"
    assert report.pump_stop_commands == [{"command": "PUMP", "id": 1, "state": False}]
    assert channel.sent[-1] == {"command": "PUMP", "id": 1, "state": False}
    assert orchestrator.get_status()["watering"]["running_since"] == {}


def test_safety_trip_clears_pump_runtime_tracking(build_orchestrator, make_sample, clock):
    orchestrator = build_orchestrator()
    orchestrator.process_sample(make_sample(26, 60, soil=(10, 10, 10, 60, 60, 60)))

    report = orchestrator.process_sample(make_sample(45, 60), clock.advance(minutes=1))

    assert report.stopped_by == "safety"
    assert orchestrator.watering.get_status()["running_since"] == {}
