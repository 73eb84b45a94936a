from types import SimpleNamespace
from unittest.mock import patch

import paho.mqtt.client as mqtt
import pytest

from app.domain.exceptions import DeviceError
from app.hardware.adapters.actuators import LoggingActuatorChannel, MQTTActuatorChannel
from app.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper


class DummyMessage:
    def __init__(self, topic: str, payload: bytes):
        self.topic = topic
        self.payload = payload


class DummyClient:
    def __init__(self, publish_rc: int = 0):
        self.on_message = None
        self.on_connect = None
        self.on_disconnect = None
        self.subscriptions = []
        self.published = []
        self.publish_rc = publish_rc

    def reconnect_delay_set(self, **_kwargs):
        return None

    def connect(self, *_args, **_kwargs):
        return 0

    def loop_start(self):
        return None

    def disconnect(self):
        return None

    def loop_stop(self):
        return None

    def subscribe(self, topic):
        self.subscriptions.append(topic)
        return (0, len(self.subscriptions))

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return SimpleNamespace(rc=self.publish_rc, topic=topic, payload=payload)


def build_wrapper(dummy_client: DummyClient, **kwargs) -> MQTTClientWrapper:
    with patch(
        "app.hardware.mqtt.mqtt_broker_wrapper.create_mqtt_client",
        return_value=dummy_client,
    ):
        wrapper = MQTTClientWrapper(broker="test", port=1883, **kwargs)
    return wrapper


def test_wrapper_fans_out_callbacks_without_overwrite():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client)
    events = []

    def telemetry_cb(_client, _userdata, msg):
        events.append(("telemetry", msg.topic, msg.payload))

    def audit_cb(_client, _userdata, msg):
        events.append(("audit", msg.topic))

    wrapper.subscribe("growmonitor/data", telemetry_cb)
    wrapper.subscribe("growmonitor/#", audit_cb)

    wrapper._dispatch_message(wrapper.client, None, DummyMessage("growmonitor/data", b'{"temp_top":25}'))

    assert ("telemetry", "growmonitor/data", b'{"temp_top":25}') in events
    assert ("audit", "growmonitor/data") in events
    assert wrapper.client.on_message == wrapper._dispatch_message
    assert wrapper.health_status.messages_received == 1


def test_failing_callback_does_not_block_others():
    wrapper = build_wrapper(DummyClient())
    hits = []

    def broken(_client, _userdata, _msg):
        raise ValueError("bad handler")

    wrapper.subscribe("growmonitor/data", broken)
    wrapper.subscribe("growmonitor/data", lambda _c, _u, msg: hits.append(msg.topic))

    wrapper._dispatch_message(wrapper.client, None, DummyMessage("growmonitor/data", b"{}"))

    assert hits == ["growmonitor/data"]


def test_offline_subscription_is_replayed_on_connect():
    dummy_client = DummyClient()
    wrapper = build_wrapper(dummy_client, auto_connect=False)

    assert wrapper.subscribe("growmonitor/data", lambda *_: None) is False
    assert dummy_client.subscriptions == []

    wrapper._on_connect(dummy_client, None, {}, SimpleNamespace(is_failure=False))

    assert dummy_client.subscriptions == ["growmonitor/data"]
    assert wrapper.connected


def test_refused_connection_is_recorded():
    wrapper = build_wrapper(DummyClient(), auto_connect=False)

    wrapper._on_connect(wrapper.client, None, {}, SimpleNamespace(is_failure=True))

    assert not wrapper.connected
    assert wrapper.health_status.last_error.startswith("CONNACK")


def test_publish_counts_success_and_failure():
    wrapper = build_wrapper(DummyClient())
    assert wrapper.publish("growmonitor/command", "{}", qos=1) is True
    assert wrapper.client.published == [("growmonitor/command", "{}", 1)]

    failing = build_wrapper(DummyClient(publish_rc=mqtt.MQTT_ERR_NO_CONN))
    assert failing.publish("growmonitor/command", "{}") is False
    assert failing.health_status.to_dict()["failed_publishes"] == 1


def test_publish_while_disconnected_fails_fast():
    wrapper = build_wrapper(DummyClient(), auto_connect=False)

    assert wrapper.publish("growmonitor/command", "{}") is False
    assert wrapper.client.published == []


class TestActuatorChannels:
    def test_mqtt_channel_publishes_json_on_command_topic(self):
        wrapper = build_wrapper(DummyClient())
        channel = MQTTActuatorChannel(wrapper, "growmonitor/")

        channel.send({"command": "PUMP", "id": 1, "state": True})

        topic, payload, qos = wrapper.client.published[0]
        assert topic == "growmonitor/command"
        assert payload == '{"command": "PUMP", "id": 1, "state": true}'
        assert qos == 0
        assert channel.get_device() == "mqtt://growmonitor/command"

    def test_mqtt_channel_raises_when_publish_fails(self):
        wrapper = build_wrapper(DummyClient(), auto_connect=False)
        channel = MQTTActuatorChannel(wrapper, "growmonitor")

        with pytest.raises(DeviceError):
            channel.send({"command": "LIGHT", "state": False})

    def test_mqtt_channel_rejects_unserializable_command(self):
        channel = MQTTActuatorChannel(build_wrapper(DummyClient()), "growmonitor")

        with pytest.raises(DeviceError):
            channel.send({"command": object()})

    def test_logging_channel_keeps_bounded_history(self):
        channel = LoggingActuatorChannel(history_size=2)
        for state in (True, False, True):
            channel.send({"command": "LIGHT", "state": state})

        assert list(channel.history) == [
            {"command": "LIGHT", "state": False},
            {"command": "LIGHT", "state": True},
        ]
        assert channel.get_device() == "log://actuators"
