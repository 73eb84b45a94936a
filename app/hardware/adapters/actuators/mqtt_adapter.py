"""
MQTT Actuator Adapter

Publishes automation commands to the controller board's command topic.
"""

import json
import logging
from typing import Any

from app.domain.exceptions import DeviceError

logger = logging.getLogger(__name__)


class MQTTActuatorChannel:
    """
    MQTT transport for actuator commands.

    Every command is one JSON document on ``<prefix>/command``. Delivery is
    at-most-once (QoS 0); the control loops resend on their next tick.
    """

    def __init__(self, mqtt_client: Any, topic_prefix: str, qos: int = 0):
        """
        Initialize MQTT channel.

        Args:
            mqtt_client: Connected MQTTClientWrapper
            topic_prefix: Topic prefix shared with the controller firmware
            qos: Publish quality of service
        """
        self.mqtt_client = mqtt_client
        self.topic = f"{topic_prefix.rstrip('/')}/command"
        self.qos = qos

    def send(self, command: dict[str, Any]) -> None:
        """
        Publish one command.

        Raises:
            DeviceError: the command could not be serialized or handed to the broker
        """
        try:
            payload = json.dumps(command)
        except (TypeError, ValueError) as e:
            raise DeviceError(f"Command is not JSON serializable: {command!r}") from e

        if not self.mqtt_client.publish(self.topic, payload, qos=self.qos):
            raise DeviceError(f"MQTT publish to {self.topic} failed")
        logger.debug("MQTT command on %s: %s", self.topic, payload)

    def get_device(self) -> str:
        return f"mqtt://{self.topic}"
