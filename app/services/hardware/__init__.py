"""
Hardware Service Layer
======================
Services on the controller-board side of the automation engine.

Services:
- ActuatorDispatcher: time-bounded command delivery with device state tracking
- SafetyInterlock: over-temperature and gas all-stop
- MQTTSampleSource: telemetry subscription feeding the orchestrator
"""

from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
from app.services.hardware.mqtt_sensor_service import MQTTSampleSource
from app.services.hardware.safety_service import SafetyInterlock, SafetyResult

__all__ = [
    "ActuatorDispatcher",
    "MQTTSampleSource",
    "SafetyInterlock",
    "SafetyResult",
]
