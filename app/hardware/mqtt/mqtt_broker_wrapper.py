"""
    This module provides a wrapper class for handling MQTT client functionality.
    It includes methods for connecting, disconnecting, publishing, and subscribing
    to an MQTT broker, with appropriate logging for each operation.

    Subscriptions are remembered and replayed whenever the client (re)connects,
    so a broker restart does not silently stop the sensor feed.

Author: Sebastian Gomez
Date: 11/03/2025
"""

import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import paho.mqtt.client as mqtt

from app.hardware.mqtt.client_factory import create_mqtt_client
from app.utils.time import utc_now

# Traffic log; handlers are installed by app.config.setup_logging
_mqtt_logger = logging.getLogger("growbox.mqtt")

_LOG_MQTT_DISPATCH = os.getenv("GROWBOX_LOG_MQTT_DISPATCH", "").lower() in {"1", "true", "t", "yes", "on"}

MessageCallback = Callable[[mqtt.Client, object, mqtt.MQTTMessage], None]


@dataclass
class HealthStatus:
    """
    Tracks the health status of the MQTT client connection.
    """

    is_connected: bool = False
    last_error: str | None = None
    last_error_time: datetime | None = None
    connection_attempts: int = 0
    reconnects: int = 0
    successful_publishes: int = 0
    failed_publishes: int = 0
    messages_received: int = 0
    active_subscriptions: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate publish success rate percentage"""
        total_publishes = self.successful_publishes + self.failed_publishes
        if total_publishes == 0:
            return 0.0
        return (self.successful_publishes / total_publishes) * 100

    def mark_connected(self):
        self.is_connected = True
        self.last_error = None
        self.last_error_time = None

    def mark_disconnected(self):
        self.is_connected = False

    def record_error(self, error: Exception | str):
        """Record a connection or operation error."""
        self.last_error = str(error)
        self.last_error_time = utc_now()

    def to_dict(self):
        """Return health status as a dictionary."""
        return {
            "is_connected": self.is_connected,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "connection_attempts": self.connection_attempts,
            "reconnects": self.reconnects,
            "successful_publishes": self.successful_publishes,
            "failed_publishes": self.failed_publishes,
            "messages_received": self.messages_received,
            "active_subscriptions": self.active_subscriptions,
            "publish_success_rate": round(self.success_rate, 2),
        }


class MQTTClientWrapper:
    """
    Wrapper class for handling MQTT client functionality.
    """

    def __init__(self, broker: str, port: int, client_id: str = "", *, keepalive: int = 60, auto_connect: bool = True):
        """
        Initializes the MQTT client wrapper.

        Args:
            broker (str): The MQTT broker address.
            port (int): The MQTT broker port.
            client_id (str, optional): The MQTT client ID. Generated when empty.
            keepalive (int): Keepalive interval in seconds.
            auto_connect (bool): Connect immediately.
        """
        self.broker = broker
        self.port = port
        self.keepalive = keepalive
        self.client = create_mqtt_client(client_id=client_id)
        self.connected = False
        self._callback_lock = threading.Lock()
        self._callbacks: list[tuple[str, MessageCallback]] = []
        # Always dispatch through our fan-out handler so multiple subscribers can coexist
        self.client.on_message = self._dispatch_message
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.health_status = HealthStatus()
        if auto_connect:
            self.connect()

    def connect(self) -> bool:
        """
        Connects to the MQTT broker and starts the network loop thread.

        paho keeps reconnecting on its own once the loop is running.
        """
        self.health_status.connection_attempts += 1
        try:
            self.client.reconnect_delay_set(min_delay=1, max_delay=30)
            self.client.connect(self.broker, self.port, self.keepalive)
            self.client.loop_start()
            self.connected = True
            self.health_status.mark_connected()
            _mqtt_logger.info("Connected to MQTT broker %s:%s", self.broker, self.port)
            return True
        except Exception as e:
            _mqtt_logger.error("Error connecting to MQTT broker %s:%s: %s", self.broker, self.port, e)
            self.connected = False
            self.health_status.record_error(e)
            return False

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if getattr(reason_code, "is_failure", False):
            self.connected = False
            self.health_status.record_error(f"CONNACK {reason_code}")
            _mqtt_logger.error("MQTT broker refused connection: %s", reason_code)
            return

        was_connected = self.health_status.is_connected
        self.connected = True
        self.health_status.mark_connected()
        with self._callback_lock:
            topics = sorted({topic for topic, _cb in self._callbacks})
        for topic in topics:
            client.subscribe(topic)
        if topics and not was_connected:
            self.health_status.reconnects += 1
            _mqtt_logger.info("Reconnected to MQTT broker, restored %d subscription(s)", len(topics))

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self.connected = False
        self.health_status.mark_disconnected()
        if getattr(reason_code, "is_failure", False):
            self.health_status.record_error(f"disconnect {reason_code}")
            _mqtt_logger.warning("Lost connection to MQTT broker: %s", reason_code)

    def disconnect(self) -> None:
        """
        Disconnects from the MQTT broker.
        """
        if not self.connected:
            return
        try:
            self.client.disconnect()
            self.client.loop_stop()
            self.connected = False
            self.health_status.mark_disconnected()
            with self._callback_lock:
                self._callbacks.clear()
            self.health_status.active_subscriptions = 0
            _mqtt_logger.info("Disconnected from MQTT broker.")
        except Exception as e:
            _mqtt_logger.error("Error disconnecting from MQTT broker: %s", e)
            self.health_status.record_error(e)

    def publish(self, topic: str, payload: str, qos: int = 0) -> bool:
        """
        Publishes a message to the MQTT broker.

        Args:
            topic (str): The MQTT topic to publish to.
            payload (str): The message payload.
            qos (int): MQTT quality of service level.

        Returns:
            True when paho accepted the message for delivery.
        """
        if not self.connected:
            self.health_status.failed_publishes += 1
            _mqtt_logger.warning("MQTT client not connected. Cannot publish to %s.", topic)
            return False
        try:
            msg_info = self.client.publish(topic, payload, qos=qos)
        except Exception as e:
            self.health_status.failed_publishes += 1
            self.health_status.record_error(e)
            _mqtt_logger.error("Error publishing to MQTT: %s", e)
            return False

        if msg_info.rc == mqtt.MQTT_ERR_SUCCESS:
            self.health_status.successful_publishes += 1
            _mqtt_logger.debug("Published to %s: %s", topic, payload)
            return True
        self.health_status.failed_publishes += 1
        _mqtt_logger.error("Failed to publish to %s: %s. MQTT result code: %s", topic, payload, msg_info.rc)
        return False

    def subscribe(self, topic: str, callback: MessageCallback) -> bool:
        """
        Subscribes to a topic and registers a callback function.

        The callback is registered even while offline; the subscription is
        sent on the next successful connect.
        """
        self._register_callback(topic, callback)
        if not self.connected:
            _mqtt_logger.warning("MQTT client not connected. Subscription to %s deferred.", topic)
            return False
        try:
            result, _mid = self.client.subscribe(topic)
        except Exception as e:
            self.health_status.record_error(e)
            _mqtt_logger.error("Error subscribing to MQTT topic %s: %s", topic, e)
            return False
        if result != mqtt.MQTT_ERR_SUCCESS:
            _mqtt_logger.error("Failed to subscribe to topic %s: result code %s", topic, result)
            return False
        _mqtt_logger.info("Subscribed to topic %s with callback %s", topic, getattr(callback, "__name__", callback))
        return True

    def _register_callback(self, topic: str, callback: MessageCallback) -> None:
        """Register a message handler without clobbering existing subscribers."""
        with self._callback_lock:
            self._callbacks.append((topic, callback))
            self.health_status.active_subscriptions = len({t for t, _cb in self._callbacks})

    def _dispatch_message(self, client, userdata, msg) -> None:
        """
        Fan out MQTT messages to all registered callbacks that match the topic
        using MQTT wildcard semantics.
        """
        self.health_status.messages_received += 1
        if _LOG_MQTT_DISPATCH:
            _mqtt_logger.debug("MQTT DISPATCHER: topic=%s payload_len=%s", msg.topic, len(msg.payload))

        with self._callback_lock:
            callbacks = list(self._callbacks)

        handled = False
        for sub, callback in callbacks:
            try:
                if mqtt.topic_matches_sub(sub, msg.topic):
                    handled = True
                    callback(client, userdata, msg)
            except Exception as e:
                _mqtt_logger.error("Error in MQTT callback for topic %s: %s", sub, e, exc_info=True)

        if not handled:
            _mqtt_logger.warning(
                "MQTT message on %s had no registered handlers (subscriptions: %s)",
                msg.topic,
                [s[0] for s in callbacks],
            )
