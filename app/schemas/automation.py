"""
Automation Schemas
==================

Request schemas for the automation control endpoints.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.enums.automation import Aggressiveness, EmergencyAction, GrowStage


class SimulateRuleRequest(BaseModel):
    """Optional sensor readings to evaluate the rule against instead of the latest sample."""

    sensor_data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Telemetry document, same shape as the MQTT data payload",
    )


class ManualActionRequest(BaseModel):
    """A human device command; without one only the automation pause is armed."""

    command: Optional[Dict[str, Any]] = Field(default=None, description="Raw actuator command")

    @field_validator("command")
    @classmethod
    def command_has_verb(cls, v):
        if v is not None and not (v.get("command") or v.get("action")):
            raise ValueError("command must contain a 'command' or 'action' key")
        return v


class WebhookUpdateRequest(BaseModel):
    url: Optional[str] = Field(default=None, description="Webhook URL; empty clears it")

    @field_validator("url")
    @classmethod
    def http_url(cls, v):
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v or None


class PlantSlotSchema(BaseModel):
    slot_index: int = Field(..., ge=0)
    pump_id: int = Field(..., ge=1)
    threshold: Optional[float] = Field(default=None, ge=0, le=100)
    enabled: bool = True


class PlantSpecificSchema(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    individual_thresholds: Optional[bool] = None
    zone_based_vpd: Optional[bool] = None
    slots: Optional[list[PlantSlotSchema]] = None


class VPDZoneSchema(BaseModel):
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)


class AutomationConfigPatch(BaseModel):
    """Partial automation settings; only the supplied keys are merged."""

    model_config = ConfigDict(extra="forbid")

    cooldown_minutes: Optional[float] = Field(default=None, ge=0)
    dry_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    pump_max_runtime_minutes: Optional[float] = Field(default=None, gt=0)
    manual_pause_minutes: Optional[float] = Field(default=None, ge=0)
    light_start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    light_duration: Optional[float] = Field(default=None, ge=0, le=24)
    vpd_min: Optional[float] = Field(default=None, ge=0)
    vpd_max: Optional[float] = Field(default=None, ge=0)
    max_temp_safe: Optional[float] = None
    max_gas_safe: Optional[float] = Field(default=None, ge=0)
    conflict_window_seconds: Optional[float] = Field(default=None, ge=0)
    plant_specific: Optional[PlantSpecificSchema] = None
    growth_stage_light: Optional[Dict[str, Any]] = None
    vpd_zones: Optional[Dict[str, VPDZoneSchema]] = None
    timezone: Optional[str] = None

    @model_validator(mode="after")
    def vpd_band_ordered(self):
        if self.vpd_min is not None and self.vpd_max is not None and self.vpd_min > self.vpd_max:
            raise ValueError("vpd_min must not exceed vpd_max")
        return self

    def to_partial(self) -> Dict[str, Any]:
        """The merge document: only the keys the caller sent, at every level."""
        return self.model_dump(exclude_unset=True)


# ==================== VPD controller ====================


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CustomTargetSchema(_Strict):
    enabled: Optional[bool] = None
    min: Optional[float] = Field(default=None, ge=0, le=5)
    max: Optional[float] = Field(default=None, ge=0, le=5)


class FanLimitsSchema(_Strict):
    min: Optional[int] = Field(default=None, ge=0, le=100)
    max: Optional[int] = Field(default=None, ge=0, le=100)


class HysteresisSchema(_Strict):
    enabled: Optional[bool] = None
    threshold_kpa: Optional[float] = Field(default=None, ge=0)
    min_seconds_between_changes: Optional[float] = Field(default=None, ge=0)


class EmergencyThresholdSchema(_Strict):
    threshold: Optional[float] = Field(default=None, ge=0)
    action: Optional[EmergencyAction] = None


class EmergencySchema(_Strict):
    enabled: Optional[bool] = None
    critical_low: Optional[EmergencyThresholdSchema] = None
    critical_high: Optional[EmergencyThresholdSchema] = None


class VPDNotificationsSchema(_Strict):
    enabled: Optional[bool] = None
    on_critical: Optional[bool] = None
    on_disable: Optional[bool] = None


class VPDConfigPatch(_Strict):
    """Partial VPD controller settings. Runtime statistics are not writable."""

    enabled: Optional[bool] = None
    grow_stage: Optional[GrowStage] = None
    custom_target: Optional[CustomTargetSchema] = None
    aggressiveness: Optional[Aggressiveness] = None
    fan_limits: Optional[FanLimitsSchema] = None
    update_interval_seconds: Optional[float] = Field(default=None, gt=0)
    hysteresis: Optional[HysteresisSchema] = None
    emergency: Optional[EmergencySchema] = None
    notifications: Optional[VPDNotificationsSchema] = None
    log_changes: Optional[bool] = None

    @model_validator(mode="after")
    def bands_ordered(self):
        for name in ("custom_target", "fan_limits"):
            block = getattr(self, name)
            if block is not None and block.min is not None and block.max is not None and block.min > block.max:
                raise ValueError(f"{name}.min must not exceed {name}.max")
        return self

    def to_partial(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True, mode="json")


class VPDCalculateRequest(BaseModel):
    """Ad-hoc VPD calculation for arbitrary climate values."""

    temperature: float = Field(..., gt=-50, lt=70)
    humidity: float = Field(..., ge=0, le=100)
    grow_stage: Optional[GrowStage] = None
