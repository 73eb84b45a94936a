"""
Service Organization
====================
Services are organized by their role:

**application/**
  Singleton services managed by ServiceContainer.
  Examples: AutomationEngine, AutomationOrchestrator, WateringService

**hardware/**
  Services that talk to the controller board.
  Examples: ActuatorDispatcher, SafetyInterlock, MQTTSampleSource

**utilities/**
  Adapters around external systems without automation state.
  Examples: WebhookAlertSink, TimedRuleStore
"""

from .application.automation_engine import AutomationEngine
from .application.automation_orchestrator import AutomationOrchestrator
from .hardware.actuator_dispatcher import ActuatorDispatcher
from .hardware.safety_service import SafetyInterlock

__all__ = [
    "ActuatorDispatcher",
    "AutomationEngine",
    "AutomationOrchestrator",
    "SafetyInterlock",
]
