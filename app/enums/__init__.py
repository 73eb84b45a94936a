"""
Enums Module
============

This module provides enumeration types for the GrowBox automation engine.
Enums ensure type safety and consistency across the codebase.
"""

from app.enums.automation import (
    ActionType,
    Aggressiveness,
    ComparisonOperator,
    ConditionType,
    EmergencyAction,
    GrowStage,
    LightStage,
    LogicOperator,
    RuleOutcome,
    RuleResult,
    TargetAction,
    TimeMode,
    VPDStatus,
)
from app.enums.events import NotificationSeverity, WebSocketEvent

__all__ = [
    # Rule enums
    "ConditionType",
    "ComparisonOperator",
    "LogicOperator",
    "TimeMode",
    "ActionType",
    "TargetAction",
    "RuleResult",
    "RuleOutcome",
    # Climate enums
    "GrowStage",
    "LightStage",
    "Aggressiveness",
    "EmergencyAction",
    "VPDStatus",
    # Event enums
    "WebSocketEvent",
    "NotificationSeverity",
]
