"""
Automation Rule Domain Objects
==============================
If-then-else automation policies authored in the dashboard and executed by
the rule scheduler.

Conditions and actions are stored as loosely typed documents; this module
turns each one into a small dataclass per kind so evaluation never has to
guess what a ``value`` field holds. A document that cannot be interpreted
raises :class:`~app.domain.exceptions.ValidationFailure`.

Condition folding is a strict left-to-right fold that starts from ``True``
and combines each condition with the accumulator using that condition's own
``logic_operator``. There is no precedence grouping: ``[a AND, b OR, c AND]``
evaluates as ``((True and a) or b) and c``. Persisted rules depend on this
order, so it must not be "fixed" to conventional precedence.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from numbers import Number
from typing import Any, Mapping, Union

from app.domain.exceptions import ValidationFailure
from app.domain.sensor_sample import SensorSample
from app.enums.automation import (
    ActionType,
    ComparisonOperator,
    ConditionType,
    LogicOperator,
    RuleResult,
    TargetAction,
    TimeMode,
)
from app.utils.time import coerce_datetime, js_weekday

MAX_TEST_RESULTS = 100


def _parse_enum(enum_cls, raw: Any, default, what: str):
    if raw is None or raw == "":
        return default
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationFailure(f"Unknown {what}: {raw!r}") from None


def _parse_number(raw: Any, what: str) -> float:
    if isinstance(raw, bool):
        raise ValidationFailure(f"{what} must be numeric, got {raw!r}")
    number = None
    if isinstance(raw, Number):
        number = float(raw)
    elif isinstance(raw, str):
        try:
            number = float(raw)
        except ValueError:
            pass
    if number is not None and math.isfinite(number):
        return number
    raise ValidationFailure(f"{what} must be numeric, got {raw!r}")


def _parse_threshold(raw: Any, operator: ComparisonOperator, sensor: str) -> float | str:
    """Numeric threshold, or a text value for ``==`` / ``!=``."""
    try:
        return _parse_number(raw, f"Condition value for {sensor}")
    except ValidationFailure:
        if operator in (ComparisonOperator.EQ, ComparisonOperator.NEQ) and isinstance(raw, str) and raw.strip():
            return raw
        raise


def _parse_hhmm(raw: Any, what: str) -> str | None:
    """Normalise ``H:MM`` / ``HH:MM`` to zero-padded ``HH:MM``."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str) or ":" not in raw:
        raise ValidationFailure(f"{what} must be HH:MM, got {raw!r}")
    hours, _, minutes = raw.strip().partition(":")
    try:
        h, m = int(hours), int(minutes[:2])
    except ValueError:
        raise ValidationFailure(f"{what} must be HH:MM, got {raw!r}") from None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        raise ValidationFailure(f"{what} out of range: {raw!r}")
    return f"{h:02d}:{m:02d}"


# ============================================================================
# Conditions
# ============================================================================


@dataclass(frozen=True)
class SensorCondition:
    """Compare a named reading against one or two thresholds."""

    sensor: str
    operator: ComparisonOperator = ComparisonOperator.GT
    value: float | str = 0.0
    value2: float | None = None
    logic_operator: LogicOperator = LogicOperator.AND

    def evaluate(self, sample: SensorSample, local_now: datetime) -> bool:
        reading = sample.get(self.sensor)
        if reading is None:
            return False
        op = self.operator
        if isinstance(reading, str) or isinstance(self.value, str):
            # text readings only support equality
            if op is ComparisonOperator.EQ:
                return reading == self.value
            if op is ComparisonOperator.NEQ:
                return reading != self.value
            return False
        if op is ComparisonOperator.GT:
            return reading > self.value
        if op is ComparisonOperator.LT:
            return reading < self.value
        if op is ComparisonOperator.GTE:
            return reading >= self.value
        if op is ComparisonOperator.LTE:
            return reading <= self.value
        if op is ComparisonOperator.EQ:
            return math.isclose(reading, self.value, abs_tol=1e-9)
        if op is ComparisonOperator.NEQ:
            return not math.isclose(reading, self.value, abs_tol=1e-9)
        # between, inclusive
        return self.value <= reading <= self.value2

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": ConditionType.SENSOR.value,
            "sensor": self.sensor,
            "operator": self.operator.value,
            "value": self.value,
            "logicOperator": self.logic_operator.value,
        }
        if self.value2 is not None:
            payload["value2"] = self.value2
        return payload


@dataclass(frozen=True)
class TimeCondition:
    """Time-of-day window in the installation's local time.

    ``between`` supports overnight windows (start > end). Comparison is on
    zero-padded ``HH:MM`` strings, so the end minute is inclusive.
    """

    start: str | None
    end: str | None = None
    mode: TimeMode = TimeMode.BETWEEN
    logic_operator: LogicOperator = LogicOperator.AND

    def evaluate(self, sample: SensorSample, local_now: datetime) -> bool:
        if not self.start:
            return False
        current = local_now.strftime("%H:%M")
        if self.mode is TimeMode.BEFORE:
            return current < self.start
        if self.mode is TimeMode.AFTER:
            return current >= self.start
        if not self.end:
            return False
        if self.start > self.end:
            return current >= self.start or current <= self.end
        return self.start <= current <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": ConditionType.TIME.value,
            "startTime": self.start,
            "endTime": self.end,
            "timeMode": self.mode.value,
            "logicOperator": self.logic_operator.value,
        }


@dataclass(frozen=True)
class ScheduleCondition:
    """Current weekday (0 = Sunday) in the configured list; empty list = every day."""

    days: tuple[int, ...] = ()
    logic_operator: LogicOperator = LogicOperator.AND

    def evaluate(self, sample: SensorSample, local_now: datetime) -> bool:
        if not self.days:
            return True
        return js_weekday(local_now) in self.days

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": ConditionType.SCHEDULE.value,
            "days": list(self.days),
            "logicOperator": self.logic_operator.value,
        }


@dataclass(frozen=True)
class ReservedCondition:
    """``manual`` and ``state`` conditions. Reserved: always false."""

    kind: ConditionType
    logic_operator: LogicOperator = LogicOperator.AND

    def evaluate(self, sample: SensorSample, local_now: datetime) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind.value, "logicOperator": self.logic_operator.value}


Condition = Union[SensorCondition, TimeCondition, ScheduleCondition, ReservedCondition]


def parse_condition(data: Mapping[str, Any]) -> Condition:
    """Build a typed condition from its stored document."""
    if not isinstance(data, Mapping):
        raise ValidationFailure(f"Condition must be an object, got {type(data).__name__}")
    kind = _parse_enum(ConditionType, data.get("type"), None, "condition type")
    if kind is None:
        raise ValidationFailure("Condition is missing its type")
    logic = _parse_enum(LogicOperator, data.get("logicOperator"), LogicOperator.AND, "logic operator")

    if kind is ConditionType.SENSOR:
        sensor = data.get("sensor")
        if not sensor or not isinstance(sensor, str):
            raise ValidationFailure("Sensor condition requires a sensor name")
        operator = _parse_enum(ComparisonOperator, data.get("operator"), ComparisonOperator.GT, "operator")
        value = _parse_threshold(data.get("value"), operator, sensor)
        value2 = None
        if operator is ComparisonOperator.BETWEEN:
            value2 = _parse_number(data.get("value2"), f"Upper bound for {sensor}")
        return SensorCondition(sensor=sensor, operator=operator, value=value, value2=value2, logic_operator=logic)

    if kind is ConditionType.TIME:
        # Both naming conventions exist in stored rules
        start = _parse_hhmm(data.get("startTime") or data.get("timeStart"), "startTime")
        end = _parse_hhmm(data.get("endTime") or data.get("timeEnd"), "endTime")
        mode = _parse_enum(TimeMode, data.get("timeMode"), TimeMode.BETWEEN, "time mode")
        return TimeCondition(start=start, end=end, mode=mode, logic_operator=logic)

    if kind is ConditionType.SCHEDULE:
        raw_days = data.get("days") or []
        if not isinstance(raw_days, (list, tuple)):
            raise ValidationFailure("Schedule days must be a list")
        days: list[int] = []
        for day in raw_days:
            if isinstance(day, bool) or not isinstance(day, int) or not 0 <= day <= 6:
                raise ValidationFailure(f"Schedule day must be 0-6, got {day!r}")
            days.append(day)
        return ScheduleCondition(days=tuple(days), logic_operator=logic)

    return ReservedCondition(kind=kind, logic_operator=logic)


# ============================================================================
# Actions
# ============================================================================


@dataclass(frozen=True)
class DeviceAction:
    """Actuator command (stored as ``type: mqtt``)."""

    device: str | None
    command: str
    value: Any = None

    def describe(self) -> str:
        return self.command

    def to_dict(self) -> dict[str, Any]:
        return {"type": ActionType.MQTT.value, "device": self.device, "command": self.command, "value": self.value}


@dataclass(frozen=True)
class DelayAction:
    """Pause before the next action of the same list."""

    seconds: float

    def describe(self) -> str:
        return f"delay:{self.seconds:g}s"

    def to_dict(self) -> dict[str, Any]:
        return {"type": ActionType.DELAY.value, "delay": self.seconds}


@dataclass(frozen=True)
class NotificationAction:
    message: str

    def describe(self) -> str:
        return "notification"

    def to_dict(self) -> dict[str, Any]:
        return {"type": ActionType.NOTIFICATION.value, "message": self.message}


@dataclass(frozen=True)
class RuleAction:
    """Enable, disable or immediately re-evaluate another rule."""

    target_rule: str
    target_action: TargetAction

    def describe(self) -> str:
        return f"rule:{self.target_action.value}:{self.target_rule}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": ActionType.RULE.value,
            "targetRule": self.target_rule,
            "targetAction": self.target_action.value,
        }


Action = Union[DeviceAction, DelayAction, NotificationAction, RuleAction]


def parse_action(data: Mapping[str, Any]) -> Action:
    """Build a typed action from its stored document."""
    if not isinstance(data, Mapping):
        raise ValidationFailure(f"Action must be an object, got {type(data).__name__}")
    kind = _parse_enum(ActionType, data.get("type"), None, "action type")
    if kind is None:
        raise ValidationFailure("Action is missing its type")

    if kind is ActionType.MQTT:
        command = data.get("command")
        if not command or not isinstance(command, str):
            raise ValidationFailure("Device action requires a command")
        device = data.get("device")
        return DeviceAction(device=str(device) if device is not None else None, command=command, value=data.get("value"))

    if kind is ActionType.DELAY:
        seconds = _parse_number(data.get("delay", data.get("seconds")), "Delay")
        if seconds < 0:
            raise ValidationFailure(f"Delay must not be negative, got {seconds}")
        return DelayAction(seconds=seconds)

    if kind is ActionType.NOTIFICATION:
        return NotificationAction(message=str(data.get("message") or ""))

    target = data.get("targetRule")
    if not target:
        raise ValidationFailure("Rule action requires targetRule")
    target_action = _parse_enum(TargetAction, data.get("targetAction"), None, "target action")
    if target_action is None:
        raise ValidationFailure("Rule action requires targetAction")
    return RuleAction(target_rule=str(target), target_action=target_action)


# ============================================================================
# Rule
# ============================================================================


@dataclass
class Rule:
    """
    A persisted automation policy.

    The rule scheduler is the only writer of ``execution_count``,
    ``last_executed``, ``last_result`` and ``test_results``.
    """

    rule_id: str
    name: str
    description: str = ""
    conditions: list[Condition] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    else_actions: list[Action] = field(default_factory=list)
    enabled: bool = True
    priority: int = 50
    cooldown: float = 0.0
    max_executions: int = 0
    execution_count: int = 0
    last_executed: datetime | None = None
    last_result: RuleResult | None = None
    depends_on: list[str] = field(default_factory=list)
    conflicts_with: list[str] = field(default_factory=list)
    group: str | None = None
    tags: list[str] = field(default_factory=list)
    test_mode: bool = False
    test_results: list[dict[str, Any]] = field(default_factory=list)
    created_at: datetime | None = None

    def __post_init__(self):
        if not 0 <= self.priority <= 100:
            raise ValidationFailure(f"Rule {self.name!r}: priority must be 0-100, got {self.priority}")
        if not math.isfinite(self.cooldown) or self.cooldown < 0:
            raise ValidationFailure(f"Rule {self.name!r}: cooldown must not be negative")

    # ------------------------------------------------------------------ #
    # Evaluation
    # ------------------------------------------------------------------ #

    def evaluate(self, sample: SensorSample, local_now: datetime) -> bool:
        """Fold the conditions left to right; an empty list is met."""
        met = True
        for condition in self.conditions:
            result = condition.evaluate(sample, local_now)
            if condition.logic_operator is LogicOperator.AND:
                met = met and result
            else:
                met = met or result
        return met

    def can_execute(self, now: datetime) -> bool:
        """False inside the cooldown window, past max executions, or when disabled."""
        if self.cooldown > 0 and self.last_executed is not None:
            elapsed = (now - self.last_executed).total_seconds()
            if elapsed < self.cooldown:
                return False
        if self.max_executions > 0 and self.execution_count >= self.max_executions:
            return False
        return self.enabled

    def select_actions(self, conditions_met: bool) -> list[Action]:
        return list(self.actions if conditions_met else self.else_actions)

    def record_test_result(self, now: datetime, sample: SensorSample, conditions_met: bool) -> dict[str, Any]:
        """Append one dry-run entry, keeping the newest ``MAX_TEST_RESULTS``."""
        entry = {
            "timestamp": now.isoformat(),
            "conditions": sample.to_dict(),
            "result": "met" if conditions_met else "not_met",
            "actions": [action.describe() for action in self.select_actions(conditions_met)],
        }
        self.test_results.append(entry)
        if len(self.test_results) > MAX_TEST_RESULTS:
            del self.test_results[: len(self.test_results) - MAX_TEST_RESULTS]
        return entry

    def copy(self) -> "Rule":
        return replace(
            self,
            conditions=list(self.conditions),
            actions=list(self.actions),
            else_actions=list(self.else_actions),
            depends_on=list(self.depends_on),
            conflicts_with=list(self.conflicts_with),
            tags=list(self.tags),
            test_results=list(self.test_results),
        )

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Rule":
        """Build a rule from its stored (camelCase) document.

        Raises:
            ValidationFailure: the document is malformed
        """
        if not isinstance(data, Mapping):
            raise ValidationFailure("Rule document must be an object")
        rule_id = data.get("id", data.get("_id", data.get("rule_id")))
        name = data.get("name")
        if rule_id is None or rule_id == "":
            raise ValidationFailure(f"Rule {name!r} has no id")
        if not name:
            raise ValidationFailure(f"Rule {rule_id} has no name")

        last_result = data.get("lastResult")
        try:
            return cls(
                rule_id=str(rule_id),
                name=str(name),
                description=str(data.get("description") or ""),
                conditions=[parse_condition(c) for c in data.get("conditions") or []],
                actions=[parse_action(a) for a in data.get("actions") or []],
                else_actions=[parse_action(a) for a in data.get("elseActions") or []],
                enabled=bool(data.get("enabled", True)),
                priority=int(_parse_number(data.get("priority", 50), "priority")),
                cooldown=_parse_number(data.get("cooldown", 0), "cooldown"),
                max_executions=int(_parse_number(data.get("maxExecutions", 0), "maxExecutions")),
                execution_count=int(_parse_number(data.get("executionCount", 0), "executionCount")),
                last_executed=coerce_datetime(data.get("lastExecuted")),
                last_result=RuleResult(last_result) if last_result else None,
                depends_on=[str(r) for r in data.get("dependsOn") or []],
                conflicts_with=[str(r) for r in data.get("conflictsWith") or []],
                group=data.get("group"),
                tags=[str(t) for t in data.get("tags") or []],
                test_mode=bool(data.get("testMode", False)),
                test_results=list(data.get("testResults") or []),
                created_at=coerce_datetime(data.get("createdAt")),
            )
        except (ValueError, TypeError, OverflowError) as exc:
            raise ValidationFailure(f"Rule {rule_id}: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.rule_id,
            "name": self.name,
            "description": self.description,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "elseActions": [a.to_dict() for a in self.else_actions],
            "enabled": self.enabled,
            "priority": self.priority,
            "cooldown": self.cooldown,
            "maxExecutions": self.max_executions,
            "executionCount": self.execution_count,
            "lastExecuted": self.last_executed.isoformat() if self.last_executed else None,
            "lastResult": self.last_result.value if self.last_result else None,
            "dependsOn": list(self.depends_on),
            "conflictsWith": list(self.conflicts_with),
            "group": self.group,
            "tags": list(self.tags),
            "testMode": self.test_mode,
            "testResults": list(self.test_results),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
