"""
Helpers for constructing paho-mqtt clients for the automation engine.

Clients use the version 2 callback API and MQTT v3.1.1, which every broker
the controller boards talk to supports. Client ids get a random suffix so a
restarted process never kicks its previous session off the broker.
"""
from __future__ import annotations

import uuid
from typing import Any

import paho.mqtt.client as mqtt

DEFAULT_CLIENT_PREFIX = "growbox"


def make_client_id(prefix: str = DEFAULT_CLIENT_PREFIX) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def create_mqtt_client(client_id: str = "", **kwargs: Any) -> mqtt.Client:
    """
    Build an MQTT client.

    Args:
        client_id: Optional client identifier; a random one is generated when empty.
        kwargs: Extra keyword arguments forwarded to the client constructor.
    """
    kwargs.setdefault("protocol", mqtt.MQTTv311)
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id or make_client_id(),
        **kwargs,
    )
