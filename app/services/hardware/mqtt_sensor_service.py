"""
MQTT Sensor Service
===================

Inbound side of the controller board link.

This service is strictly responsible for:
1. Subscribing to ``<prefix>/data``.
2. Decoding each telemetry JSON document into a ``SensorSample``.
3. Mirroring the raw reading to dashboard clients.
4. Handing the sample to the automation orchestrator's queue.

It never runs automation itself: the MQTT network thread must return
quickly, so all policy work happens on the orchestrator worker.

Author: Sebastian Gomez
Updated: January 2026
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from app.domain.sensor_sample import SensorSample
from app.enums.events import WebSocketEvent
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
    from app.services.protocols import LiveBroadcaster

logger = logging.getLogger(__name__)


class MQTTSampleSource:
    """
    Routes telemetry messages into the automation engine.

    Guaranteed not to raise from the MQTT callback, so a malformed payload
    can never kill the paho network loop.
    """

    def __init__(
        self,
        mqtt_client: "MQTTClientWrapper",
        topic_prefix: str,
        submit: Callable[[SensorSample], bool],
        *,
        broadcaster: "LiveBroadcaster | None" = None,
    ):
        """
        Initializes the service and subscribes.

        Args:
            mqtt_client: Wrapper for MQTT subscriptions and message handling.
            topic_prefix: Topic prefix shared with the controller firmware.
            submit: Sample sink, normally ``AutomationOrchestrator.submit_sample``.
            broadcaster: Optional live channel the raw reading is mirrored to.
        """
        self.mqtt_client = mqtt_client
        self.topic = f"{topic_prefix.rstrip('/')}/data"
        self.submit = submit
        self.broadcaster = broadcaster

        # Trace logging (payload preview) is intentionally noisy for debugging.
        trace_env = os.getenv("GROWBOX_MQTT_TRACE", "false").strip().lower()
        self._trace_messages = trace_env in {"1", "true", "yes", "on"}

        self.received_count = 0
        self.invalid_count = 0
        self.dropped_count = 0
        self.last_seen: datetime | None = None

        self.mqtt_client.subscribe(self.topic, self._on_message)
        logger.info("MQTTSampleSource listening on %s", self.topic)

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        payload = getattr(msg, "payload", b"")
        if self._trace_messages:
            logger.info("MQTT [%s] -> %s", getattr(msg, "topic", ""), bytes(payload).decode(errors="ignore")[:250])
        try:
            self.ingest(payload)
        except Exception as exc:
            logger.exception("Telemetry routing error: %s", exc)

    def ingest(self, payload: bytes | str) -> SensorSample | None:
        """Decode one telemetry payload and submit it. Returns the sample, or None if rejected."""
        self.received_count += 1
        data = self._parse_json(payload)
        if data is None:
            self.invalid_count += 1
            return None

        sample = SensorSample.from_dict(data)
        self.last_seen = utc_now()

        if self.broadcaster is not None:
            try:
                self.broadcaster.broadcast(WebSocketEvent.SENSOR_DATA.value, data)
            except Exception as exc:
                logger.debug("Sensor data broadcast failed: %s", exc)

        if not self.submit(sample):
            self.dropped_count += 1
        return sample

    def _parse_json(self, payload: bytes | str) -> dict[str, Any] | None:
        """Safely decodes MQTT byte payload into a JSON dictionary."""
        try:
            decoded = payload.decode(errors="strict") if isinstance(payload, (bytes, bytearray)) else payload
            data = json.loads(decoded)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error("Invalid telemetry JSON on %s: %s", self.topic, exc)
            return None

        if not isinstance(data, dict):
            logger.warning("Dropped non-object telemetry payload on %s", self.topic)
            return None
        return data

    def get_status(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "received": self.received_count,
            "invalid": self.invalid_count,
            "dropped": self.dropped_count,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
        }
