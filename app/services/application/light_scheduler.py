"""
Time-of-day grow light schedule.

The photoperiod comes either from ``light_start_hour`` + ``light_duration``
or, when the growth-stage table is enabled, from the current stage's
duration and intensity. A ``LIGHT`` command is sent only when the desired
state changes; turning on under the stage table also sets ``LIGHT_PWM``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from app.domain.actuator_commands import Command, device_switch, light_pwm_command
from app.domain.exceptions import ActuatorDispatchFailure

if TYPE_CHECKING:
    from app.domain.automation_config import AutomationConfig
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LightPlan:
    should_be_on: bool
    duration_hours: float
    intensity_pct: float
    start_hour: int
    end_hour: float


def plan_light(config: "AutomationConfig", local_now: datetime) -> LightPlan:
    """Desired light state at ``local_now`` (installation local time)."""
    duration = config.light_duration
    intensity = 100.0
    if config.stage_light_enabled:
        stage = config.stage_lights.get(config.light_stage)
        if stage is not None:
            duration = stage.duration_hours
            intensity = stage.intensity_pct

    start = config.light_start_hour
    end = (start + duration) % 24
    hour = local_now.hour

    if duration <= 0:
        should_be_on = False
    elif duration >= 24:
        should_be_on = True
    elif start < end:
        should_be_on = start <= hour < end
    else:
        # Photoperiod wraps past midnight
        should_be_on = hour >= start or hour < end

    return LightPlan(
        should_be_on=should_be_on,
        duration_hours=duration,
        intensity_pct=intensity,
        start_hour=start,
        end_hour=end,
    )


class LightScheduler:
    """Owns the last commanded light state."""

    def __init__(self, dispatcher: "ActuatorDispatcher"):
        self.dispatcher = dispatcher
        self.last_state: bool | None = None
        self._lock = threading.Lock()

    def run(self, config: "AutomationConfig", local_now: datetime) -> list[Command]:
        plan = plan_light(config, local_now)
        with self._lock:
            if self.last_state is plan.should_be_on:
                return []

            sent: list[Command] = []
            switch = device_switch("LIGHT", plan.should_be_on)
            try:
                self.dispatcher.send(switch)
            except ActuatorDispatchFailure as exc:
                # State stays unknown so the next tick tries again
                logger.error("Light schedule command failed: %s", exc)
                return sent
            sent.append(switch)
            logger.info("Light schedule -> %s (%02d:00)", "ON" if plan.should_be_on else "OFF", local_now.hour)

            if plan.should_be_on and config.stage_light_enabled:
                pwm = light_pwm_command(plan.intensity_pct)
                try:
                    self.dispatcher.send(pwm)
                    sent.append(pwm)
                    logger.info("Light intensity -> %.0f%%", plan.intensity_pct)
                except ActuatorDispatchFailure as exc:
                    logger.error("Light intensity command failed: %s", exc)

            self.last_state = plan.should_be_on
            return sent

    def reset(self) -> None:
        with self._lock:
            self.last_state = None
