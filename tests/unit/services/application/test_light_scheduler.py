from dataclasses import replace
from datetime import datetime

import pytest

from app.domain.automation_config import AutomationConfig
from app.enums.automation import LightStage
from app.services.application.light_scheduler import LightScheduler, plan_light


def at(hour: int) -> datetime:
    return datetime(2024, 6, 1, hour, 30)


class TestPlanLight:
    @pytest.mark.parametrize("hour,expected", [(5, False), (6, True), (12, True), (23, True)])
    def test_default_photoperiod_ends_at_midnight(self, hour, expected):
        assert plan_light(AutomationConfig(), at(hour)).should_be_on is expected

    def test_window_inside_one_day(self):
        config = AutomationConfig(light_start_hour=8, light_duration=10)
        assert plan_light(config, at(8)).should_be_on
        assert plan_light(config, at(17)).should_be_on
        assert not plan_light(config, at(18)).should_be_on

    def test_window_wrapping_midnight(self):
        config = AutomationConfig(light_start_hour=20, light_duration=12)
        plan = plan_light(config, at(3))
        assert plan.should_be_on
        assert plan.end_hour == 8
        assert not plan_light(config, at(9)).should_be_on

    def test_zero_and_full_day_durations(self):
        assert not plan_light(AutomationConfig(light_duration=0), at(12)).should_be_on
        assert plan_light(AutomationConfig(light_duration=24), at(3)).should_be_on

    def test_stage_table_overrides_duration(self):
        config = AutomationConfig(stage_light_enabled=True, light_stage=LightStage.FLOWERING)
        plan = plan_light(config, at(17))
        assert plan.duration_hours == 12
        assert plan.intensity_pct == 100
        assert plan.should_be_on
        assert not plan_light(config, at(18)).should_be_on


class TestLightScheduler:
    def test_sends_only_on_state_change(self, dispatcher, channel):
        scheduler = LightScheduler(dispatcher)
        config = AutomationConfig()

        assert scheduler.run(config, at(12)) == [{"command": "LIGHT", "state": True}]
        assert scheduler.run(config, at(13)) == []
        assert scheduler.run(config, at(3)) == [{"command": "LIGHT", "state": False}]
        assert len(channel.sent) == 2

    def test_stage_light_sets_intensity_when_turning_on(self, dispatcher, channel):
        scheduler = LightScheduler(dispatcher)
        config = AutomationConfig(stage_light_enabled=True)  # vegetative: 18 h at 80 %

        scheduler.run(config, at(12))

        assert channel.sent == [
            {"command": "LIGHT", "state": True},
            {"command": "LIGHT_PWM", "value": 204},
        ]

    def test_failed_switch_is_retried_next_tick(self, failing_dispatcher):
        scheduler = LightScheduler(failing_dispatcher)

        assert scheduler.run(AutomationConfig(), at(12)) == []
        assert scheduler.last_state is None

    def test_reset_forces_resend(self, dispatcher, channel):
        scheduler = LightScheduler(dispatcher)
        config = replace(AutomationConfig(), light_duration=24)
        scheduler.run(config, at(12))
        scheduler.reset()
        scheduler.run(config, at(12))

        assert len(channel.sent) == 2
