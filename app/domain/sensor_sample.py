"""
Sensor Sample Value Object
==========================
Immutable snapshot of every reading taken in one telemetry cycle.

The grow box reports three climate zones (bottom/middle/top), one soil
moisture sensor per plant slot, a light sensor, a gas sensor and the water
tank level. A sample is produced by the ingestion side and read, never
modified, by every policy in the same tick.

Sensors that are unplugged or faulty report ``0`` or a negative value; the
zone helpers ignore those readings.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from numbers import Number
from types import MappingProxyType
from typing import Any, Mapping

from app.utils.psychrometrics import calculate_vpd
from app.utils.time import coerce_datetime, utc_now

ZONES = ("bottom", "middle", "top")

_SOIL_NAME = re.compile(r"^soil(?:_moisture)?_?(\d+)$")
_KNOWN_KEYS = {
    "temp_bottom",
    "temp_middle",
    "temp_top",
    "humidity_bottom",
    "humidity_middle",
    "humidity_top",
    "soil",
    "lux",
    "gas",
    "tankLevel",
    "tank_level",
    "timestamp",
}


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, Number):
        return None
    return float(value)


def _valid(values: list[float | None]) -> list[float]:
    return [v for v in values if v is not None and v > 0]


@dataclass(frozen=True)
class SensorSample:
    """
    Readings for one evaluation tick.

    Attributes:
        temp_bottom / temp_middle / temp_top: zone temperatures in °C
        humidity_bottom / humidity_middle / humidity_top: zone humidity in %RH
        soil: soil moisture per plant slot in %, slot index = position
        lux: light level
        gas: gas sensor raw reading
        tank_level: water tank level in %
        timestamp: aware UTC time the sample was taken
        extras: any other numeric or text readings, looked up by name in rule conditions
    """

    temp_bottom: float | None = None
    temp_middle: float | None = None
    temp_top: float | None = None
    humidity_bottom: float | None = None
    humidity_middle: float | None = None
    humidity_top: float | None = None
    soil: tuple[float | None, ...] = ()
    lux: float | None = None
    gas: float | None = None
    tank_level: float | None = None
    timestamp: datetime = field(default_factory=utc_now)
    extras: Mapping[str, float | str] = field(default_factory=dict)

    def __post_init__(self):
        # frozen dataclass: normalise containers via object.__setattr__
        object.__setattr__(self, "soil", tuple(self.soil))
        object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SensorSample":
        """Build a sample from the telemetry JSON payload.

        Non-numeric zone, soil and tank readings are treated as absent. Unknown
        keys with numeric or text values are kept in ``extras``.
        """
        raw_soil = data.get("soil") or []
        if not isinstance(raw_soil, (list, tuple)):
            raw_soil = []
        tank = data.get("tankLevel", data.get("tank_level"))
        timestamp = coerce_datetime(data.get("timestamp")) or utc_now()
        extras: dict[str, float | str] = {}
        for key, value in data.items():
            if key in _KNOWN_KEYS:
                continue
            if _number(value) is not None:
                extras[key] = float(value)
            elif isinstance(value, str):
                extras[key] = value
        return cls(
            temp_bottom=_number(data.get("temp_bottom")),
            temp_middle=_number(data.get("temp_middle")),
            temp_top=_number(data.get("temp_top")),
            humidity_bottom=_number(data.get("humidity_bottom")),
            humidity_middle=_number(data.get("humidity_middle")),
            humidity_top=_number(data.get("humidity_top")),
            soil=tuple(_number(v) for v in raw_soil),
            lux=_number(data.get("lux")),
            gas=_number(data.get("gas")),
            tank_level=_number(tank),
            timestamp=timestamp,
            extras=extras,
        )

    # ------------------------------------------------------------------ #
    # Zone helpers
    # ------------------------------------------------------------------ #

    def zone_temperature(self, zone: str) -> float | None:
        return getattr(self, f"temp_{zone}", None)

    def zone_humidity(self, zone: str) -> float | None:
        return getattr(self, f"humidity_{zone}", None)

    def zone_temperatures(self) -> list[float]:
        return _valid([self.zone_temperature(z) for z in ZONES])

    def zone_humidities(self) -> list[float]:
        return _valid([self.zone_humidity(z) for z in ZONES])

    def average_temperature(self) -> float | None:
        temps = self.zone_temperatures()
        return sum(temps) / len(temps) if temps else None

    def average_humidity(self) -> float | None:
        hums = self.zone_humidities()
        return sum(hums) / len(hums) if hums else None

    def max_temperature(self) -> float | None:
        temps = self.zone_temperatures()
        return max(temps) if temps else None

    def vpd(self) -> float | None:
        """VPD of the zone averages, None when either average is missing."""
        temp = self.average_temperature()
        humidity = self.average_humidity()
        if temp is None or humidity is None:
            return None
        return calculate_vpd(temp, humidity)

    def soil_reading(self, slot: int) -> float | None:
        if 0 <= slot < len(self.soil):
            return self.soil[slot]
        return None

    # ------------------------------------------------------------------ #
    # Named lookup (rule conditions)
    # ------------------------------------------------------------------ #

    def get(self, name: str) -> float | str | None:
        """Resolve a reading by the name a rule condition uses.

        Supports direct fields (``temp_top``, ``gas``, ``tankLevel``), derived
        values (``temperature``, ``humidity``, ``vpd``), soil slots
        (``soil_0``, ``soil_moisture_3``) and ``extras``; only ``extras`` can hold
        text. Returns None when the reading does not exist.
        """
        if not name:
            return None
        if name in ("temperature", "temp"):
            return self.average_temperature()
        if name == "humidity":
            return self.average_humidity()
        if name == "vpd":
            return self.vpd()
        if name in ("tankLevel", "tank_level"):
            return self.tank_level
        match = _SOIL_NAME.match(name)
        if match:
            return self.soil_reading(int(match.group(1)))
        if name in ("lux", "gas") or name.startswith(("temp_", "humidity_")):
            return _number(getattr(self, name, None))
        return self.extras.get(name)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "temp_bottom": self.temp_bottom,
            "temp_middle": self.temp_middle,
            "temp_top": self.temp_top,
            "humidity_bottom": self.humidity_bottom,
            "humidity_middle": self.humidity_middle,
            "humidity_top": self.humidity_top,
            "soil": list(self.soil),
            "lux": self.lux,
            "gas": self.gas,
            "tankLevel": self.tank_level,
            "timestamp": self.timestamp.isoformat(),
        }
        payload.update(self.extras)
        return payload
