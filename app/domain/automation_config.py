"""
Automation Configuration
========================
Runtime-editable settings of the hard-coded policies run by the automation
orchestrator: safety limits, manual pause, light schedule, fallback VPD band,
watering thresholds and the per-plant / per-zone variants.

Updates arrive as partial documents from the dashboard and are deep-merged
into the current configuration (:meth:`AutomationConfig.merged`).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Mapping

from app.domain.exceptions import ValidationError
from app.domain.vpd import TargetBand
from app.enums.automation import LightStage

ZONE_NAMES = ("bottom", "middle", "top")


@dataclass(frozen=True)
class PlantSlot:
    """One plant position: which pump feeds it and when it counts as dry."""

    slot_index: int
    pump_id: int
    threshold: float = 30.0
    enabled: bool = True


@dataclass(frozen=True)
class StageLight:
    duration_hours: float
    intensity_pct: float


DEFAULT_STAGE_LIGHTS: dict[LightStage, StageLight] = {
    LightStage.SEEDLING: StageLight(duration_hours=16, intensity_pct=60),
    LightStage.VEGETATIVE: StageLight(duration_hours=18, intensity_pct=80),
    LightStage.FLOWERING: StageLight(duration_hours=12, intensity_pct=100),
    LightStage.HARVEST: StageLight(duration_hours=12, intensity_pct=50),
}


def _default_slots() -> tuple[PlantSlot, ...]:
    # Slots 0-2 hang on pump 1, slots 3-5 on pump 2
    return tuple(PlantSlot(slot_index=i, pump_id=1 if i < 3 else 2) for i in range(6))


def _default_zones() -> dict[str, TargetBand]:
    return {
        "bottom": TargetBand(min=0.8, max=1.0, optimal=0.9),
        "middle": TargetBand(min=0.9, max=1.2, optimal=1.05),
        "top": TargetBand(min=1.0, max=1.4, optimal=1.2),
    }


@dataclass(frozen=True)
class AutomationConfig:
    """
    Settings of the orchestrator's built-in policies.

    Attributes:
        cooldown_minutes: minimum pause between two waterings of the same pump
        dry_threshold: soil moisture (%) under which a group counts as dry
        pump_max_runtime_minutes: a pump still on after this long is switched off
        manual_pause_minutes: automation pause after a human device command
        light_start_hour / light_duration: photoperiod when no stage table is used
        vpd_min / vpd_max: band of the on/off fan fallback used while VPD control is off
        max_temp_safe / max_gas_safe: safety interlock limits
        conflict_window_seconds: how recently a conflicting rule must have run to block another
        timezone: IANA zone for wall-clock decisions, None for the host zone
    """

    cooldown_minutes: float = 60.0
    dry_threshold: float = 30.0
    pump_max_runtime_minutes: float = 10.0
    manual_pause_minutes: float = 30.0
    light_start_hour: int = 6
    light_duration: float = 18.0
    vpd_min: float = 0.8
    vpd_max: float = 1.2
    max_temp_safe: float = 40.0
    max_gas_safe: float = 3500.0
    conflict_window_seconds: float = 60.0
    plant_specific_enabled: bool = False
    individual_thresholds: bool = False
    zone_based_vpd: bool = False
    plant_slots: tuple[PlantSlot, ...] = field(default_factory=_default_slots)
    stage_light_enabled: bool = False
    light_stage: LightStage = LightStage.VEGETATIVE
    stage_lights: Mapping[LightStage, StageLight] = field(default_factory=lambda: dict(DEFAULT_STAGE_LIGHTS))
    vpd_zones: Mapping[str, TargetBand] = field(default_factory=_default_zones)
    timezone: str | None = None

    def __post_init__(self):
        if not 0 <= self.light_start_hour <= 23:
            raise ValidationError(f"light_start_hour must be 0-23, got {self.light_start_hour}")
        if self.vpd_min > self.vpd_max:
            raise ValidationError("vpd_min must not exceed vpd_max")
        if self.cooldown_minutes < 0 or self.manual_pause_minutes < 0:
            raise ValidationError("Durations must not be negative")
        if self.pump_max_runtime_minutes <= 0:
            raise ValidationError("pump_max_runtime_minutes must be positive")
        for name, band in self.vpd_zones.items():
            if band.min > band.max:
                raise ValidationError(f"VPD zone {name}: min must not exceed max")

    def pump_ids(self) -> list[int]:
        return sorted({slot.pump_id for slot in self.plant_slots})

    def slots_for_pump(self, pump_id: int) -> list[PlantSlot]:
        return [slot for slot in self.plant_slots if slot.pump_id == pump_id]

    def slot_threshold(self, slot: PlantSlot) -> float:
        return slot.threshold if self.individual_thresholds else self.dry_threshold

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        return {
            "cooldown_minutes": self.cooldown_minutes,
            "dry_threshold": self.dry_threshold,
            "pump_max_runtime_minutes": self.pump_max_runtime_minutes,
            "manual_pause_minutes": self.manual_pause_minutes,
            "light_start_hour": self.light_start_hour,
            "light_duration": self.light_duration,
            "vpd_min": self.vpd_min,
            "vpd_max": self.vpd_max,
            "max_temp_safe": self.max_temp_safe,
            "max_gas_safe": self.max_gas_safe,
            "conflict_window_seconds": self.conflict_window_seconds,
            "plant_specific": {
                "enabled": self.plant_specific_enabled,
                "individual_thresholds": self.individual_thresholds,
                "zone_based_vpd": self.zone_based_vpd,
                "slots": [
                    {
                        "slot_index": s.slot_index,
                        "pump_id": s.pump_id,
                        "threshold": s.threshold,
                        "enabled": s.enabled,
                    }
                    for s in self.plant_slots
                ],
            },
            "growth_stage_light": {
                "enabled": self.stage_light_enabled,
                "stage": self.light_stage.value,
                **{
                    stage.value: {"duration": light.duration_hours, "intensity": light.intensity_pct}
                    for stage, light in self.stage_lights.items()
                },
            },
            "vpd_zones": {name: {"min": band.min, "max": band.max} for name, band in self.vpd_zones.items()},
            "timezone": self.timezone,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "AutomationConfig":
        """Build from a stored document; missing keys take their defaults.

        Raises:
            ValidationError: a value has the wrong type or is out of range
        """
        data = data or {}
        defaults = cls()
        plant = data.get("plant_specific") or {}
        light = data.get("growth_stage_light") or {}
        zones = data.get("vpd_zones") or {}

        try:
            slots = tuple(
                PlantSlot(
                    slot_index=int(s["slot_index"]),
                    pump_id=int(s["pump_id"]),
                    threshold=float(s.get("threshold", data.get("dry_threshold", defaults.dry_threshold))),
                    enabled=bool(s.get("enabled", True)),
                )
                for s in plant.get("slots") or []
            ) or defaults.plant_slots

            stage_lights = dict(DEFAULT_STAGE_LIGHTS)
            for stage in LightStage:
                entry = light.get(stage.value)
                if isinstance(entry, Mapping):
                    base = stage_lights[stage]
                    stage_lights[stage] = StageLight(
                        duration_hours=float(entry.get("duration", base.duration_hours)),
                        intensity_pct=float(entry.get("intensity", base.intensity_pct)),
                    )

            vpd_zones = dict(defaults.vpd_zones)
            for name in ZONE_NAMES:
                entry = zones.get(name)
                if isinstance(entry, Mapping):
                    low = float(entry.get("min", vpd_zones[name].min))
                    high = float(entry.get("max", vpd_zones[name].max))
                    vpd_zones[name] = TargetBand(min=low, max=high, optimal=(low + high) / 2)

            return cls(
                cooldown_minutes=float(data.get("cooldown_minutes", defaults.cooldown_minutes)),
                dry_threshold=float(data.get("dry_threshold", defaults.dry_threshold)),
                pump_max_runtime_minutes=float(
                    data.get("pump_max_runtime_minutes", defaults.pump_max_runtime_minutes)
                ),
                manual_pause_minutes=float(data.get("manual_pause_minutes", defaults.manual_pause_minutes)),
                light_start_hour=int(data.get("light_start_hour", defaults.light_start_hour)),
                light_duration=float(data.get("light_duration", defaults.light_duration)),
                vpd_min=float(data.get("vpd_min", defaults.vpd_min)),
                vpd_max=float(data.get("vpd_max", defaults.vpd_max)),
                max_temp_safe=float(data.get("max_temp_safe", defaults.max_temp_safe)),
                max_gas_safe=float(data.get("max_gas_safe", defaults.max_gas_safe)),
                conflict_window_seconds=float(data.get("conflict_window_seconds", defaults.conflict_window_seconds)),
                plant_specific_enabled=bool(plant.get("enabled", False)),
                individual_thresholds=bool(plant.get("individual_thresholds", False)),
                zone_based_vpd=bool(plant.get("zone_based_vpd", False)),
                plant_slots=slots,
                stage_light_enabled=bool(light.get("enabled", False)),
                light_stage=LightStage(light.get("stage", defaults.light_stage.value)),
                stage_lights=stage_lights,
                vpd_zones=vpd_zones,
                timezone=data.get("timezone") or None,
            )
        except (TypeError, ValueError, KeyError) as exc:
            raise ValidationError(f"Invalid automation config: {exc}") from exc

    def merged(self, partial: Mapping[str, Any]) -> "AutomationConfig":
        """Return a new config with ``partial`` deep-merged over this one."""
        return AutomationConfig.from_dict(deep_merge(self.to_dict(), partial))


def deep_merge(base: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``update`` into a copy of ``base``. Lists are replaced."""
    result = copy.deepcopy(dict(base))
    for key, value in update.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result
