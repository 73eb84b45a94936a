"""
Fan Speed Controller
====================

Tiered step controller mapping the VPD error to a new exhaust fan speed.

    error = current_vpd - band.optimal

    |error| >  0.4        → jump to the profile extreme
    0.2 < |error| <= 0.4  → move 2 × step
    0.1 < |error| <= 0.2  → move 1 × step
    |error| <  0.05       → dead zone, speed returned unchanged
    otherwise             → move step / 2

A positive error (air drier than target) raises the speed, a negative one
lowers it. Outside the dead zone the result is clamped to the profile range
and rounded half-up to a whole percent.

Stateless: the caller keeps the returned value as the next ``current_speed``.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.domain.actuator_commands import round_half_up
from app.domain.vpd import TargetBand
from app.enums.automation import Aggressiveness

DEAD_ZONE_KPA = 0.05
FINE_KPA = 0.1
MODERATE_KPA = 0.2
EXTREME_KPA = 0.4


@dataclass(frozen=True)
class FanProfile:
    step: int
    min_speed: int
    max_speed: int

    def clamp(self, speed: float) -> float:
        return max(self.min_speed, min(self.max_speed, speed))


FAN_PROFILES: dict[Aggressiveness, FanProfile] = {
    Aggressiveness.GENTLE: FanProfile(step=5, min_speed=20, max_speed=70),
    Aggressiveness.NORMAL: FanProfile(step=10, min_speed=30, max_speed=85),
    Aggressiveness.AGGRESSIVE: FanProfile(step=15, min_speed=40, max_speed=100),
}


def fan_profile(aggressiveness: Aggressiveness | str | None) -> FanProfile:
    """Profile for ``aggressiveness``; unknown values use the normal profile."""
    try:
        return FAN_PROFILES[Aggressiveness(aggressiveness)]
    except (ValueError, KeyError):
        return FAN_PROFILES[Aggressiveness.NORMAL]


def next_fan_speed(
    current_vpd: float,
    band: TargetBand,
    current_speed: int,
    aggressiveness: Aggressiveness | str = Aggressiveness.NORMAL,
) -> int:
    """Compute the next fan speed (percent) for ``current_vpd``."""
    profile = fan_profile(aggressiveness)
    error = current_vpd - band.optimal
    magnitude = abs(error)
    direction = 1 if error > 0 else -1

    if magnitude < DEAD_ZONE_KPA:
        return current_speed

    if magnitude > EXTREME_KPA:
        target = profile.max_speed if direction > 0 else profile.min_speed
    elif magnitude > MODERATE_KPA:
        target = current_speed + direction * 2 * profile.step
    elif magnitude > FINE_KPA:
        target = current_speed + direction * profile.step
    else:
        target = current_speed + direction * profile.step / 2

    return round_half_up(profile.clamp(target))
