from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from app.config import AppConfig
from app.control_loops.vpd_control_loop import VPDControlLoop
from app.domain.actuator_commands import DeviceStateTracker
from app.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
from app.services.application.alert_service import QueuedAlertDispatcher
from app.services.application.automation_engine import AutomationEngine
from app.services.application.automation_orchestrator import AutomationOrchestrator
from app.services.application.light_scheduler import LightScheduler
from app.services.application.watering_service import WateringService
from app.services.container_builder import ContainerBuilder
from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
from app.services.hardware.mqtt_sensor_service import MQTTSampleSource
from app.services.hardware.safety_service import SafetyInterlock
from app.services.utilities.timed_stores import TimedConfigStore, TimedRuleStore
from app.services.utilities.webhook_service import WebhookAlertSink
from app.utils.emitters import SocketIOBroadcaster
from infrastructure.database.sqlite_handler import SQLiteDatabaseHandler

if TYPE_CHECKING:
    from flask_socketio import SocketIO

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Aggregate and manage the automation services."""

    config: AppConfig
    database: SQLiteDatabaseHandler
    rule_store: TimedRuleStore
    config_store: TimedConfigStore
    mqtt_client: Optional[MQTTClientWrapper]
    actuator_channel: Any
    broadcaster: Optional[SocketIOBroadcaster]
    webhook_sink: WebhookAlertSink
    alerts: QueuedAlertDispatcher
    state_tracker: DeviceStateTracker
    dispatchers: list[ActuatorDispatcher]
    vpd_loop: VPDControlLoop
    safety: SafetyInterlock
    engine: AutomationEngine
    light_scheduler: LightScheduler
    watering: WateringService
    orchestrator: AutomationOrchestrator
    sample_source: Optional[MQTTSampleSource]

    @classmethod
    def build(
        cls,
        config: AppConfig,
        *,
        socketio: "SocketIO | None" = None,
        start_runtime: bool = False,
    ) -> "ServiceContainer":
        """Construct the service container with all dependencies.

        Args:
            config: Application configuration
            socketio: Socket.IO server for live dashboard updates
            start_runtime: Start the alert worker, sample worker and (if
                ``config.start_engine``) the rule scheduler
        """
        logger.info("Building ServiceContainer using ContainerBuilder...")
        components = ContainerBuilder(config, socketio=socketio).build()
        container = cls(**components)

        if start_runtime:
            container.start()

        logger.info("ServiceContainer built successfully.")
        return container

    def start(self) -> None:
        self.alerts.start()
        self.orchestrator.start()
        if self.config.start_engine:
            self.engine.start()
        logger.info("✓ Automation runtime started (engine=%s)", self.engine.is_running)

    def shutdown(self) -> None:
        """Release external resources before process exit."""
        self.engine.stop()
        self.orchestrator.stop()

        # Deliver whatever alerts are still queued before the worker goes away
        self.alerts.stop()
        delivered = self.alerts.drain()
        if delivered:
            logger.info("Delivered %s queued alerts during shutdown", delivered)

        for dispatcher in self.dispatchers:
            dispatcher.shutdown()
        self.rule_store.shutdown()
        self.config_store.shutdown()

        if self.mqtt_client is not None:
            self.mqtt_client.disconnect()
        self.database.close()
        logger.info("ServiceContainer shutdown complete.")
