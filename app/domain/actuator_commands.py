"""
Actuator Command Vocabulary
===========================
Builders for the JSON commands understood by the grow-box controller
firmware, and a tracker of the last state we commanded for each device.

Two command dialects coexist on the command topic:

* ``{"action": ..., ...}`` for relay/PWM commands issued by the rule scheduler
  and the VPD loop (``set_relay``, ``set_fan_speed``, ``set_fan_pwm`` ...)
* ``{"command": ..., "state"/"id"/"value": ...}`` for the built-in policies
  (``LIGHT``, ``PUMP``, ``FAN_EXHAUST``, ``LIGHT_PWM`` ...)
"""

from __future__ import annotations

import copy
import logging
import math
import threading
from typing import Any

from app.domain.exceptions import ValidationFailure

logger = logging.getLogger(__name__)

Command = dict[str, Any]

FAN_DEVICES = frozenset({"fan", "fan_exhaust"})
LIGHT_DEVICES = frozenset({"light", "grow_light"})
PUMP_CHANNELS = (1, 2)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def pwm_value(percent: float) -> int:
    """Rescale 0-100 % to the firmware's 0-255 PWM range."""
    clamped = max(0.0, min(100.0, float(percent)))
    return round_half_up(clamped / 100.0 * 255)


def relay_command(relay: str | None, state: bool) -> Command:
    return {"action": "set_relay", "relay": relay, "state": bool(state)}


def fan_speed_command(percent: int) -> Command:
    return {"action": "set_fan_speed", "value": int(percent)}


def device_switch(command: str, state: bool) -> Command:
    return {"command": command, "state": bool(state)}


def pump_command(pump_id: int, state: bool) -> Command:
    return {"command": "PUMP", "id": int(pump_id), "state": bool(state)}


def light_pwm_command(intensity_pct: float) -> Command:
    return {"command": "LIGHT_PWM", "value": pwm_value(intensity_pct)}


def fan_pwm_command(percent: float) -> Command:
    return {"command": "FAN_PWM", "value": pwm_value(percent)}


def all_stop_commands() -> list[Command]:
    """Everything off: light, both pumps, intake and exhaust fans, humidifier."""
    return [
        device_switch("LIGHT", False),
        *(pump_command(pump_id, False) for pump_id in PUMP_CHANNELS),
        device_switch("FAN_INTAKE", False),
        device_switch("FAN_EXHAUST", False),
        device_switch("HUMID", False),
    ]


def rule_command(device: str | None, command: str, value: Any = None) -> Command:
    """Translate a rule's device action into a firmware command.

    ``ON``/``OFF`` become relay commands; ``PWM``/``SET_PWM`` rescale a 0-100
    value to 0-255 and address the fan or light channel (other devices get a
    generic ``set_pwm``); anything else passes through verbatim.

    Raises:
        ValidationFailure: a PWM command without a numeric value
    """
    if command in ("ON", "OFF"):
        return relay_command(device, command == "ON")
    if command in ("PWM", "SET_PWM"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationFailure(f"PWM command for {device!r} needs a numeric value, got {value!r}")
        pwm = pwm_value(value)
        if device in FAN_DEVICES:
            return {"action": "set_fan_pwm", "value": pwm}
        if device in LIGHT_DEVICES:
            return {"action": "set_light_pwm", "value": pwm}
        return {"action": "set_pwm", "device": device, "value": pwm}
    return {"action": command, "device": device, "value": value}


_SWITCH_TO_RELAY = {
    "LIGHT": "light",
    "FAN_EXHAUST": "fan_exhaust",
    "FAN_INTAKE": "fan_intake",
    "HUMID": "humidifier",
}

_PWM_ACTIONS = {
    "set_fan_speed": "fan_exhaust",
    "set_fan_pwm": "fan_exhaust",
    "set_light_pwm": "grow_light",
    "LIGHT_PWM": "grow_light",
    "FAN_PWM": "fan_exhaust",
}


def _as_level(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


class DeviceStateTracker:
    """Last commanded relay / PWM state per device, for status reporting.

    Updated from every command that leaves through the actuator channel, so
    it reflects what we asked for, not what the hardware confirmed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._relays: dict[str, bool] = {
            "light": False,
            "fan_exhaust": False,
            "fan_intake": False,
            "humidifier": False,
            "pump_1": False,
            "pump_2": False,
        }
        self._pwm: dict[str, int] = {"fan_exhaust": 0, "grow_light": 0}
        self._fan_speed: int | None = None

    def record(self, command: Command) -> None:
        with self._lock:
            action = command.get("action")
            name = command.get("command")
            if action == "set_relay" and command.get("relay"):
                self._relays[str(command["relay"])] = bool(command.get("state"))
            elif name == "PUMP":
                self._relays[f"pump_{command.get('id')}"] = bool(command.get("state"))
            elif name in _SWITCH_TO_RELAY:
                self._relays[_SWITCH_TO_RELAY[name]] = bool(command.get("state"))
                if name == "LIGHT" and not command.get("state"):
                    self._pwm["grow_light"] = 0
            elif action in _PWM_ACTIONS or name in _PWM_ACTIONS or action == "set_pwm":
                self._record_level(command, action or name)

    def _record_level(self, command: Command, verb: str) -> None:
        level = _as_level(command.get("value", 0))
        if level is None:
            logger.debug("Not tracking %s with non-numeric value %r", verb, command.get("value"))
            return
        if verb == "set_fan_speed":
            self._fan_speed = level
            self._pwm["fan_exhaust"] = pwm_value(level)
        elif verb == "set_pwm":
            if command.get("device"):
                self._pwm[str(command["device"])] = level
        else:
            self._pwm[_PWM_ACTIONS[verb]] = level

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "relays": copy.deepcopy(self._relays),
                "pwm": copy.deepcopy(self._pwm),
                "fan_speed": self._fan_speed,
            }
