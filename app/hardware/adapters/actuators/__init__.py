"""
Actuator Adapters

Transports for actuator commands.
"""
from app.hardware.adapters.actuators.logging_adapter import LoggingActuatorChannel
from app.hardware.adapters.actuators.mqtt_adapter import MQTTActuatorChannel

__all__ = [
    'LoggingActuatorChannel',
    'MQTTActuatorChannel',
]
