"""
Container Builder
=================

Construction logic behind ServiceContainer.build().

Each build_*() method wires one subsystem:
- build_infrastructure(): database, rule and config stores
- build_mqtt_components(): broker connection and actuator channel
- build_shared_utilities(): Socket.IO broadcaster, alert pipeline
- build_hardware_components(): device state tracker and actuator dispatchers
- build_automation_components(): control loops, rule engine, orchestrator

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from app.config import AppConfig
from app.control_loops.vpd_control_loop import VPDControlLoop
from app.domain.actuator_commands import DeviceStateTracker
from app.domain.automation_config import AutomationConfig
from app.hardware.adapters.actuators import LoggingActuatorChannel, MQTTActuatorChannel
from app.hardware.mqtt.client_factory import make_client_id
from app.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
from app.services.application.alert_service import QueuedAlertDispatcher
from app.services.application.automation_engine import AutomationEngine
from app.services.application.automation_orchestrator import AutomationOrchestrator
from app.services.application.light_scheduler import LightScheduler
from app.services.application.watering_service import WateringService
from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
from app.services.hardware.mqtt_sensor_service import MQTTSampleSource
from app.services.hardware.safety_service import SafetyInterlock
from app.services.utilities.timed_stores import TimedConfigStore, TimedRuleStore
from app.services.utilities.webhook_service import WebhookAlertSink
from app.utils.emitters import SocketIOBroadcaster
from infrastructure.database.repositories.automation import SQLiteConfigStore, SQLiteRuleStore
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

if TYPE_CHECKING:
    from flask_socketio import SocketIO

    from app.services.protocols import ActuatorChannel

logger = logging.getLogger(__name__)


@dataclass
class InfrastructureComponents:
    """Persistence layer: database plus time-bounded stores."""

    database: SQLiteDatabaseHandler
    rule_store: TimedRuleStore
    config_store: TimedConfigStore


@dataclass
class MQTTComponents:
    """Broker connection (None when disabled) and the actuator transport."""

    mqtt_client: MQTTClientWrapper | None
    actuator_channel: "ActuatorChannel"


@dataclass
class SharedUtilities:
    broadcaster: SocketIOBroadcaster | None
    webhook_sink: WebhookAlertSink
    alerts: QueuedAlertDispatcher


@dataclass
class HardwareComponents:
    """Actuator dispatchers. Each caller class gets its own worker pool."""

    state_tracker: DeviceStateTracker
    rule_dispatcher: ActuatorDispatcher
    safety_dispatcher: ActuatorDispatcher
    control_dispatcher: ActuatorDispatcher
    manual_dispatcher: ActuatorDispatcher


@dataclass
class AutomationComponents:
    vpd_loop: VPDControlLoop
    safety: SafetyInterlock
    engine: AutomationEngine
    light_scheduler: LightScheduler
    watering: WateringService
    orchestrator: AutomationOrchestrator
    sample_source: MQTTSampleSource | None


class ContainerBuilder:
    """
    Builder for constructing the service container.

    The rule engine reads the live automation settings owned by the
    orchestrator, which in turn needs the engine; the builder breaks the
    cycle by handing the engine a provider that resolves the orchestrator
    lazily.
    """

    def __init__(self, config: AppConfig, *, socketio: "SocketIO | None" = None):
        """Initialize builder with configuration and an optional Socket.IO server."""
        self.config = config
        self.socketio = socketio
        self._orchestrator: AutomationOrchestrator | None = None

    def build_infrastructure(self) -> InfrastructureComponents:
        logger.info("Building infrastructure components...")

        database = SQLiteDatabaseHandler(self.config.database_path)
        database.init_app(None)

        timeout = self.config.persistence_timeout_seconds
        rule_store = TimedRuleStore(SQLiteRuleStore(database), timeout_seconds=timeout)
        config_store = TimedConfigStore(SQLiteConfigStore(database), timeout_seconds=timeout)

        logger.info("✓ Infrastructure components initialized (%s)", self.config.database_path)
        return InfrastructureComponents(database=database, rule_store=rule_store, config_store=config_store)

    def build_mqtt_components(self) -> MQTTComponents:
        """
        Build the MQTT connection (if enabled) and the actuator channel.

        Without MQTT, commands go to a LoggingActuatorChannel so the rest of
        the system runs unchanged.
        """
        logger.info("Building MQTT components...")

        if not self.config.enable_mqtt:
            logger.info("MQTT disabled, actuator commands will only be logged")
            return MQTTComponents(mqtt_client=None, actuator_channel=LoggingActuatorChannel())

        mqtt_client = MQTTClientWrapper(
            broker=self.config.mqtt_broker_host,
            port=self.config.mqtt_broker_port,
            client_id=self.config.mqtt_client_id or make_client_id(),
        )
        if not mqtt_client.connected:
            logger.warning("⚠️  MQTT broker %s not reachable yet; retrying in background", self.config.mqtt_broker_host)

        channel = MQTTActuatorChannel(mqtt_client, self.config.mqtt_topic_prefix)
        logger.info("✓ MQTT components initialized (commands on %s)", channel.topic)
        return MQTTComponents(mqtt_client=mqtt_client, actuator_channel=channel)

    def build_shared_utilities(self) -> SharedUtilities:
        logger.info("Building shared utilities...")

        broadcaster = SocketIOBroadcaster(self.socketio) if self.socketio is not None else None
        webhook_sink = WebhookAlertSink(
            self.config.alert_webhook_url,
            timeout_seconds=self.config.alert_timeout_seconds,
        )
        alerts = QueuedAlertDispatcher(webhook_sink, queue_size=self.config.alert_queue_size)

        logger.info(
            "✓ Shared utilities initialized (socketio=%s, webhook=%s)",
            broadcaster is not None,
            webhook_sink.url is not None,
        )
        return SharedUtilities(broadcaster=broadcaster, webhook_sink=webhook_sink, alerts=alerts)

    def build_hardware_components(self, mqtt: MQTTComponents) -> HardwareComponents:
        logger.info("Building hardware components...")

        tracker = DeviceStateTracker()
        timeout = self.config.command_timeout_seconds

        def dispatcher(name: str) -> ActuatorDispatcher:
            return ActuatorDispatcher(
                mqtt.actuator_channel,
                timeout_seconds=timeout,
                name=name,
                state_tracker=tracker,
            )

        components = HardwareComponents(
            state_tracker=tracker,
            rule_dispatcher=dispatcher("rules"),
            safety_dispatcher=dispatcher("safety"),
            control_dispatcher=dispatcher("control"),
            manual_dispatcher=dispatcher("manual"),
        )
        logger.info("✓ Hardware components initialized")
        return components

    def _load_automation_config(self, infra: InfrastructureComponents) -> AutomationConfig:
        config = infra.config_store.get_automation_config()
        if config.timezone is None and self.config.timezone:
            config = replace(config, timezone=self.config.timezone)
        return config

    def _current_automation_config(self) -> AutomationConfig:
        if self._orchestrator is None:
            return AutomationConfig()
        return self._orchestrator.get_automation_config()

    def build_automation_components(
        self,
        infra: InfrastructureComponents,
        mqtt: MQTTComponents,
        utils: SharedUtilities,
        hardware: HardwareComponents,
    ) -> AutomationComponents:
        logger.info("Building automation components...")

        vpd_loop = VPDControlLoop(
            infra.config_store.get_vpd_config(),
            hardware.control_dispatcher,
            config_store=infra.config_store,
            alerts=utils.alerts,
            broadcaster=utils.broadcaster,
        )
        safety = SafetyInterlock(
            hardware.safety_dispatcher,
            self._current_automation_config,
            alerts=utils.alerts,
            broadcaster=utils.broadcaster,
        )
        engine = AutomationEngine(
            infra.rule_store,
            hardware.rule_dispatcher,
            alerts=utils.alerts,
            config_provider=self._current_automation_config,
            check_interval_seconds=self.config.rule_check_interval_seconds,
            max_delay_seconds=self.config.max_delay_seconds,
        )
        light_scheduler = LightScheduler(hardware.control_dispatcher)
        watering = WateringService(hardware.control_dispatcher, alerts=utils.alerts)

        orchestrator = AutomationOrchestrator(
            engine=engine,
            safety=safety,
            vpd_loop=vpd_loop,
            light_scheduler=light_scheduler,
            watering=watering,
            manual_dispatcher=hardware.manual_dispatcher,
            automation_config=self._load_automation_config(infra),
            config_store=infra.config_store,
            state_tracker=hardware.state_tracker,
            broadcaster=utils.broadcaster,
            sample_queue_size=self.config.sample_queue_size,
        )
        self._orchestrator = orchestrator

        sample_source = None
        if mqtt.mqtt_client is not None:
            sample_source = MQTTSampleSource(
                mqtt.mqtt_client,
                self.config.mqtt_topic_prefix,
                orchestrator.submit_sample,
                broadcaster=utils.broadcaster,
            )

        logger.info("✓ Automation components initialized")
        return AutomationComponents(
            vpd_loop=vpd_loop,
            safety=safety,
            engine=engine,
            light_scheduler=light_scheduler,
            watering=watering,
            orchestrator=orchestrator,
            sample_source=sample_source,
        )

    def build(self) -> dict[str, Any]:
        """
        Build every subsystem.

        Returns:
            Dictionary with all components for ServiceContainer construction
        """
        infra = self.build_infrastructure()
        mqtt = self.build_mqtt_components()
        utils = self.build_shared_utilities()
        hardware = self.build_hardware_components(mqtt)
        automation = self.build_automation_components(infra, mqtt, utils, hardware)

        return {
            "config": self.config,
            "database": infra.database,
            "rule_store": infra.rule_store,
            "config_store": infra.config_store,
            "mqtt_client": mqtt.mqtt_client,
            "actuator_channel": mqtt.actuator_channel,
            "broadcaster": utils.broadcaster,
            "webhook_sink": utils.webhook_sink,
            "alerts": utils.alerts,
            "state_tracker": hardware.state_tracker,
            "dispatchers": [
                hardware.rule_dispatcher,
                hardware.safety_dispatcher,
                hardware.control_dispatcher,
                hardware.manual_dispatcher,
            ],
            "vpd_loop": automation.vpd_loop,
            "safety": automation.safety,
            "engine": automation.engine,
            "light_scheduler": automation.light_scheduler,
            "watering": automation.watering,
            "orchestrator": automation.orchestrator,
            "sample_source": automation.sample_source,
        }
