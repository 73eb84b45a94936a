"""
VPD Controller Domain Objects
=============================
Configuration and runtime statistics of the closed-loop VPD → fan controller,
plus the stage presets and the reading classifier shared with the API.

``VPDConfig`` is loaded once at startup, mutated only by the VPD control loop
and written back through the config store after each applied change.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping

from app.domain.exceptions import ValidationError
from app.enums.automation import Aggressiveness, EmergencyAction, GrowStage, VPDStatus
from app.utils.psychrometrics import (
    calculate_dew_point_c,
    calculate_optimal_humidity,
    calculate_optimal_temperature,
    calculate_vpd,
)
from app.utils.time import coerce_datetime

ROLLING_WINDOW = 100
CRITICAL_MARGIN_KPA = 0.3


@dataclass(frozen=True)
class TargetBand:
    """Target VPD band in kPa."""

    min: float
    max: float
    optimal: float

    def contains(self, vpd: float) -> bool:
        return self.min <= vpd <= self.max

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


STAGE_TARGETS: dict[GrowStage, TargetBand] = {
    GrowStage.SEEDLING: TargetBand(min=0.4, max=0.8, optimal=0.6),
    GrowStage.VEGETATIVE: TargetBand(min=0.8, max=1.2, optimal=1.0),
    GrowStage.FLOWERING: TargetBand(min=1.0, max=1.5, optimal=1.25),
    GrowStage.LATE_FLOWERING: TargetBand(min=1.2, max=1.6, optimal=1.4),
}


def stage_target(stage: GrowStage | str | None) -> TargetBand:
    """Preset band for a growth stage; unknown stages fall back to vegetative."""
    try:
        return STAGE_TARGETS[GrowStage(stage)]
    except (ValueError, KeyError):
        return STAGE_TARGETS[GrowStage.VEGETATIVE]


def _coerce_enum(enum_cls, raw: Any, default):
    try:
        return enum_cls(raw)
    except ValueError:
        return default


# ============================================================================
# Nested configuration blocks
# ============================================================================


@dataclass
class CustomTarget:
    enabled: bool = False
    min: float = 0.8
    max: float = 1.2


@dataclass
class FanLimits:
    min: int = 30
    max: int = 85


@dataclass
class Hysteresis:
    enabled: bool = True
    threshold_kpa: float = 0.05
    min_seconds_between_changes: float = 60.0


@dataclass
class EmergencyThreshold:
    threshold: float
    action: EmergencyAction


@dataclass
class EmergencySettings:
    enabled: bool = True
    critical_low: EmergencyThreshold = field(
        default_factory=lambda: EmergencyThreshold(threshold=0.3, action=EmergencyAction.MIN_FAN)
    )
    critical_high: EmergencyThreshold = field(
        default_factory=lambda: EmergencyThreshold(threshold=2.0, action=EmergencyAction.MAX_FAN)
    )


@dataclass
class VPDNotifications:
    enabled: bool = True
    on_critical: bool = True
    on_disable: bool = True


@dataclass
class LastUpdate:
    timestamp: datetime | None = None
    fan_speed: int | None = None
    vpd: float | None = None
    action: str | None = None


@dataclass
class VPDStatistics:
    total_adjustments: int = 0
    average_vpd: float = 0.0
    time_in_optimal_range_minutes: float = 0.0
    last_reset: datetime | None = None


# ============================================================================
# VPDConfig
# ============================================================================


@dataclass
class VPDConfig:
    """Per-installation controller configuration and runtime statistics."""

    enabled: bool = False
    grow_stage: GrowStage = GrowStage.VEGETATIVE
    custom_target: CustomTarget = field(default_factory=CustomTarget)
    aggressiveness: Aggressiveness = Aggressiveness.NORMAL
    fan_limits: FanLimits = field(default_factory=FanLimits)
    update_interval_seconds: float = 30.0
    hysteresis: Hysteresis = field(default_factory=Hysteresis)
    emergency: EmergencySettings = field(default_factory=EmergencySettings)
    notifications: VPDNotifications = field(default_factory=VPDNotifications)
    log_changes: bool = True
    last_update: LastUpdate = field(default_factory=LastUpdate)
    statistics: VPDStatistics = field(default_factory=VPDStatistics)

    @property
    def target_range(self) -> TargetBand:
        """Custom band (optimal = midpoint) when enabled, else the stage preset."""
        if self.custom_target.enabled:
            low, high = self.custom_target.min, self.custom_target.max
            return TargetBand(min=low, max=high, optimal=(low + high) / 2)
        return stage_target(self.grow_stage)

    def update_statistics(self, vpd: float, in_optimal_range: bool, now: datetime) -> None:
        """Fold one applied adjustment into the rolling statistics.

        Must run before :meth:`log_action` so time-in-range is measured from
        the previous adjustment.
        """
        stats = self.statistics
        stats.total_adjustments += 1
        weight = min(stats.total_adjustments, ROLLING_WINDOW)
        stats.average_vpd = ((stats.average_vpd or 0.0) * (weight - 1) + vpd) / weight
        if in_optimal_range and self.last_update.timestamp is not None:
            elapsed_minutes = (now - self.last_update.timestamp).total_seconds() / 60.0
            stats.time_in_optimal_range_minutes += max(0.0, elapsed_minutes)

    def log_action(self, vpd: float, fan_speed: int, action: str, now: datetime) -> None:
        self.last_update = LastUpdate(timestamp=now, fan_speed=fan_speed, vpd=vpd, action=action)

    def reset_statistics(self, now: datetime) -> None:
        self.statistics = VPDStatistics(last_reset=now)

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "VPDConfig":
        data = data or {}
        defaults = cls()
        custom = data.get("custom_target") or {}
        limits = data.get("fan_limits") or {}
        hyst = data.get("hysteresis") or {}
        emergency = data.get("emergency") or {}
        low = emergency.get("critical_low") or {}
        high = emergency.get("critical_high") or {}
        notes = data.get("notifications") or {}
        last = data.get("last_update") or {}
        stats = data.get("statistics") or {}

        return cls(
            enabled=bool(data.get("enabled", defaults.enabled)),
            grow_stage=_coerce_enum(GrowStage, data.get("grow_stage"), defaults.grow_stage),
            custom_target=CustomTarget(
                enabled=bool(custom.get("enabled", False)),
                min=float(custom.get("min", 0.8)),
                max=float(custom.get("max", 1.2)),
            ),
            aggressiveness=_coerce_enum(Aggressiveness, data.get("aggressiveness"), defaults.aggressiveness),
            fan_limits=FanLimits(min=int(limits.get("min", 30)), max=int(limits.get("max", 85))),
            update_interval_seconds=float(data.get("update_interval_seconds", defaults.update_interval_seconds)),
            hysteresis=Hysteresis(
                enabled=bool(hyst.get("enabled", True)),
                threshold_kpa=float(hyst.get("threshold_kpa", 0.05)),
                min_seconds_between_changes=float(hyst.get("min_seconds_between_changes", 60)),
            ),
            emergency=EmergencySettings(
                enabled=bool(emergency.get("enabled", True)),
                critical_low=EmergencyThreshold(
                    threshold=float(low.get("threshold", 0.3)),
                    action=_coerce_enum(EmergencyAction, low.get("action"), EmergencyAction.MIN_FAN),
                ),
                critical_high=EmergencyThreshold(
                    threshold=float(high.get("threshold", 2.0)),
                    action=_coerce_enum(EmergencyAction, high.get("action"), EmergencyAction.MAX_FAN),
                ),
            ),
            notifications=VPDNotifications(
                enabled=bool(notes.get("enabled", True)),
                on_critical=bool(notes.get("on_critical", True)),
                on_disable=bool(notes.get("on_disable", True)),
            ),
            log_changes=bool(data.get("log_changes", True)),
            last_update=LastUpdate(
                timestamp=coerce_datetime(last.get("timestamp")),
                fan_speed=last.get("fan_speed"),
                vpd=last.get("vpd"),
                action=last.get("action"),
            ),
            statistics=VPDStatistics(
                total_adjustments=int(stats.get("total_adjustments", 0)),
                average_vpd=float(stats.get("average_vpd", 0.0)),
                time_in_optimal_range_minutes=float(stats.get("time_in_optimal_range_minutes", 0.0)),
                last_reset=coerce_datetime(stats.get("last_reset")),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["grow_stage"] = self.grow_stage.value
        payload["aggressiveness"] = self.aggressiveness.value
        for key in ("critical_low", "critical_high"):
            payload["emergency"][key]["action"] = getattr(self.emergency, key).action.value
        stamp = self.last_update.timestamp
        payload["last_update"]["timestamp"] = stamp.isoformat() if stamp else None
        reset = self.statistics.last_reset
        payload["statistics"]["last_reset"] = reset.isoformat() if reset else None
        payload["target_range"] = self.target_range.to_dict()
        return payload


# ============================================================================
# Analysis
# ============================================================================


@dataclass(frozen=True)
class VPDAnalysis:
    """Classification of one reading against a band."""

    status: VPDStatus
    severity: str
    recommendation: str
    difference: float
    percentage_off: int
    in_range: bool

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


def analyze_vpd(vpd: float, band: TargetBand) -> VPDAnalysis:
    """Classify ``vpd`` against ``band``.

    Readings more than 0.3 kPa outside the band are critical.
    """
    if vpd < band.min - CRITICAL_MARGIN_KPA:
        status, severity = VPDStatus.CRITICAL_LOW, "critical"
        recommendation = "VPD far too low: raise temperature or lower humidity substantially."
    elif vpd < band.min:
        status, severity = VPDStatus.LOW, "warning"
        recommendation = "VPD slightly low: raise temperature or lower humidity a little."
    elif vpd <= band.max:
        status, severity = VPDStatus.OPTIMAL, "ok"
        recommendation = "VPD in the optimal range."
    elif vpd <= band.max + CRITICAL_MARGIN_KPA:
        status, severity = VPDStatus.HIGH, "warning"
        recommendation = "VPD slightly high: lower temperature or raise humidity a little."
    else:
        status, severity = VPDStatus.CRITICAL_HIGH, "critical"
        recommendation = "VPD far too high: lower temperature or raise humidity substantially."

    difference = vpd - band.optimal
    percentage_off = int(round(difference / band.optimal * 100)) if band.optimal else 0
    return VPDAnalysis(
        status=status,
        severity=severity,
        recommendation=recommendation,
        difference=round(difference, 2),
        percentage_off=percentage_off,
        in_range=band.contains(vpd),
    )


def vpd_report(temperature_c: float, relative_humidity: float, band: TargetBand) -> dict[str, Any] | None:
    """VPD of one climate reading, its classification and the set points that
    would hit ``band.optimal``. None when the reading is unusable.
    """
    vpd = calculate_vpd(temperature_c, relative_humidity)
    if vpd is None:
        return None
    analysis = analyze_vpd(vpd, band)
    return {
        "vpd": round(vpd, 2),
        "current": {"temperature": temperature_c, "humidity": relative_humidity},
        "target": band.to_dict(),
        "analysis": analysis.to_dict(),
        "suggestions": {
            "optimal_temperature": calculate_optimal_temperature(band.optimal, relative_humidity),
            "optimal_humidity": calculate_optimal_humidity(band.optimal, temperature_c),
            "dew_point": calculate_dew_point_c(temperature_c, relative_humidity),
            "message": analysis.recommendation,
        },
    }


def check_vpd_config(config: VPDConfig) -> None:
    """Reject settings the control loop cannot run with.

    Raises:
        ValidationError: an invariant of the configuration is violated
    """
    if config.custom_target.min > config.custom_target.max:
        raise ValidationError("custom_target.min must not exceed custom_target.max")
    if not 0 <= config.fan_limits.min <= config.fan_limits.max <= 100:
        raise ValidationError("fan_limits must satisfy 0 <= min <= max <= 100")
    if config.update_interval_seconds <= 0:
        raise ValidationError("update_interval_seconds must be positive")
    if config.hysteresis.threshold_kpa < 0 or config.hysteresis.min_seconds_between_changes < 0:
        raise ValidationError("hysteresis values must not be negative")
    if config.emergency.critical_low.threshold >= config.emergency.critical_high.threshold:
        raise ValidationError("emergency.critical_low must be below emergency.critical_high")
