"""
Automation Enumerations
=======================

Enums shared by the rule scheduler, the VPD control loop and the
automation orchestrator. Values match the strings stored in the rule and
configuration documents, so members can be built straight from persisted
payloads (``ConditionType("sensor")``).
"""

from enum import Enum


class ConditionType(str, Enum):
    """Kinds of rule conditions."""

    SENSOR = "sensor"
    TIME = "time"
    SCHEDULE = "schedule"
    # Reserved kinds, always evaluate false
    MANUAL = "manual"
    STATE = "state"

    def __str__(self) -> str:
        return self.value


class ComparisonOperator(str, Enum):
    """Operators supported by sensor conditions."""

    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NEQ = "!="
    BETWEEN = "between"

    def __str__(self) -> str:
        return self.value


class LogicOperator(str, Enum):
    """How a condition folds into the running result."""

    AND = "AND"
    OR = "OR"

    def __str__(self) -> str:
        return self.value


class TimeMode(str, Enum):
    """Time-of-day condition modes."""

    BETWEEN = "between"
    BEFORE = "before"
    AFTER = "after"

    def __str__(self) -> str:
        return self.value


class ActionType(str, Enum):
    """Kinds of rule actions."""

    MQTT = "mqtt"
    DELAY = "delay"
    NOTIFICATION = "notification"
    RULE = "rule"

    def __str__(self) -> str:
        return self.value


class TargetAction(str, Enum):
    """Operations a rule action may apply to another rule."""

    ENABLE = "enable"
    DISABLE = "disable"
    TRIGGER = "trigger"

    def __str__(self) -> str:
        return self.value


class RuleResult(str, Enum):
    """Persisted ``lastResult`` of a rule."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value


class RuleOutcome(str, Enum):
    """
    What happened to a rule during one scheduler pass.
    Used by: process_rules / the status API. Not persisted.
    """

    EXECUTED = "executed"
    NOTHING_TO_DO = "nothing_to_do"
    TEST_LOGGED = "test_logged"
    CANNOT_EXECUTE = "cannot_execute"
    DEPENDENCY_DISABLED = "dependency_disabled"
    CONFLICT = "conflict"
    INVALID = "invalid"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class GrowStage(str, Enum):
    """Growth stages with VPD target presets."""

    SEEDLING = "seedling"
    VEGETATIVE = "vegetative"
    FLOWERING = "flowering"
    LATE_FLOWERING = "late_flowering"

    def __str__(self) -> str:
        return self.value


class LightStage(str, Enum):
    """Growth stages with photoperiod presets."""

    SEEDLING = "seedling"
    VEGETATIVE = "vegetative"
    FLOWERING = "flowering"
    HARVEST = "harvest"

    def __str__(self) -> str:
        return self.value


class Aggressiveness(str, Enum):
    """Fan controller response profiles."""

    GENTLE = "gentle"
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"

    def __str__(self) -> str:
        return self.value


class EmergencyAction(str, Enum):
    """Responses to a critical VPD reading."""

    MIN_FAN = "min_fan"
    MAX_FAN = "max_fan"
    DISABLE = "disable"
    ALERT_ONLY = "alert_only"

    def __str__(self) -> str:
        return self.value


class VPDStatus(str, Enum):
    """Classification of a VPD reading against its target band."""

    CRITICAL_LOW = "critical_low"
    LOW = "low"
    OPTIMAL = "optimal"
    HIGH = "high"
    CRITICAL_HIGH = "critical_high"

    def __str__(self) -> str:
        return self.value
