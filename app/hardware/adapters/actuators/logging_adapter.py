"""
Logging Actuator Adapter

Stands in for the controller board when MQTT is disabled (bench runs,
UI development). Commands are logged and kept in a short history.
"""

import logging
from collections import deque
from typing import Any

logger = logging.getLogger(__name__)


class LoggingActuatorChannel:
    """Actuator channel that records commands instead of transmitting them."""

    def __init__(self, history_size: int = 50):
        self.history: deque[dict[str, Any]] = deque(maxlen=history_size)

    def send(self, command: dict[str, Any]) -> None:
        self.history.append(dict(command))
        logger.info("Dry-run actuator command: %s", command)

    def get_device(self) -> str:
        return "log://actuators"
