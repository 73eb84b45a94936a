"""
Schemas Module
==============

Pydantic models for request validation.
"""

from app.schemas.automation import (
    AutomationConfigPatch,
    ManualActionRequest,
    PlantSlotSchema,
    PlantSpecificSchema,
    SimulateRuleRequest,
    VPDZoneSchema,
    WebhookUpdateRequest,
)

__all__ = [
    "AutomationConfigPatch",
    "ManualActionRequest",
    "PlantSlotSchema",
    "PlantSpecificSchema",
    "SimulateRuleRequest",
    "VPDZoneSchema",
    "WebhookUpdateRequest",
]
