import pytest

from app.control_loops.fan_speed import fan_profile, next_fan_speed
from app.domain.vpd import stage_target
from app.enums.automation import Aggressiveness

VEG = stage_target("vegetative")  # optimal 1.0


@pytest.mark.parametrize(
    "vpd,expected",
    [
        (1.03, 50),  # dead zone
        (0.97, 50),
        (1.08, 55),  # half step
        (1.15, 60),  # one step
        (0.85, 40),
        (1.30, 70),  # two steps
        (0.70, 30),
        (1.50, 85),  # extreme high -> profile max
        (0.50, 30),  # extreme low -> profile min
    ],
)
def test_normal_profile_tiers(vpd, expected):
    assert next_fan_speed(vpd, VEG, 50) == expected


def test_dead_zone_returns_current_speed_unclamped():
    assert next_fan_speed(1.01, VEG, 95) == 95


def test_result_is_clamped_to_profile():
    assert next_fan_speed(1.3, VEG, 80) == 85
    assert next_fan_speed(0.75, VEG, 35) == 30


def test_gentle_profile_half_step_rounds_half_up():
    assert next_fan_speed(1.08, VEG, 50, Aggressiveness.GENTLE) == 53
    assert next_fan_speed(0.92, VEG, 50, "gentle") == 48


def test_aggressive_profile_moves_further():
    assert next_fan_speed(1.3, VEG, 50, Aggressiveness.AGGRESSIVE) == 80
    assert next_fan_speed(2.0, VEG, 50, Aggressiveness.AGGRESSIVE) == 100


def test_unknown_aggressiveness_uses_normal_profile():
    assert fan_profile("turbo") == fan_profile(Aggressiveness.NORMAL)
    assert fan_profile(None).step == 10


@pytest.mark.parametrize("aggressiveness", list(Aggressiveness))
@pytest.mark.parametrize("current", [0, 30, 50, 85, 100])
def test_speed_is_monotonic_in_error_outside_dead_zone(aggressiveness, current):
    profile = fan_profile(aggressiveness)
    # errors -2.50 .. +2.50 kPa around the 1.0 optimum, dead zone excluded
    errors = [step / 100 for step in range(-250, 251) if abs(step) > 5]

    speeds = [next_fan_speed(VEG.optimal + error, VEG, current, aggressiveness) for error in errors]

    assert speeds == sorted(speeds)
    assert all(profile.min_speed <= speed <= profile.max_speed for speed in speeds)


@pytest.mark.parametrize("aggressiveness", list(Aggressiveness))
@pytest.mark.parametrize("current", [0, 42, 100])
def test_dead_zone_keeps_speed_for_every_profile(aggressiveness, current):
    for step in range(-4, 5):
        assert next_fan_speed(VEG.optimal + step / 100, VEG, current, aggressiveness) == current
