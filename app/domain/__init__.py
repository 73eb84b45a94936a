"""
Domain Package
==============
Value objects and pure policies of the automation engine.

- sensor_sample: one telemetry reading from the controller board
- rules: user-defined automation rules (conditions, actions, bookkeeping)
- vpd: VPD controller settings, growth-stage targets and analysis
- automation_config: built-in policy settings (watering, light, safety)
- actuator_commands: wire-format command builders and the device state tracker
"""

from .actuator_commands import Command, DeviceStateTracker
from .automation_config import AutomationConfig, PlantSlot, StageLight
from .exceptions import (
    ActuatorDispatchFailure,
    ConfigurationError,
    DeviceError,
    ExternalServiceError,
    GrowBoxError,
    NotFoundError,
    PersistenceFailure,
    ServiceError,
    ValidationError,
    ValidationFailure,
)
from .rules import Rule
from .sensor_sample import SensorSample
from .vpd import TargetBand, VPDConfig, analyze_vpd, stage_target

__all__ = [
    # Telemetry
    "SensorSample",
    # Rules
    "Rule",
    # VPD
    "TargetBand",
    "VPDConfig",
    "analyze_vpd",
    "stage_target",
    # Built-in policies
    "AutomationConfig",
    "PlantSlot",
    "StageLight",
    # Commands
    "Command",
    "DeviceStateTracker",
    # Errors
    "GrowBoxError",
    "ValidationError",
    "ValidationFailure",
    "NotFoundError",
    "ServiceError",
    "PersistenceFailure",
    "ExternalServiceError",
    "DeviceError",
    "ActuatorDispatchFailure",
    "ConfigurationError",
]
