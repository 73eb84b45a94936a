"""
AutomationOrchestrator: per-sample entry point of the automation engine.

Sequence for every incoming sensor sample::

    feed rule engine → pump runtime limit → safety interlock (stop on trip)
    → manual override gate → light schedule → VPD loop (or zone variant)
    → watering policy

The pump runtime limit runs ahead of the override gate so a pump started by
the watering policy is still switched off during a manual pause.

Samples arrive through a bounded queue consumed by one worker thread, so a
burst of telemetry never piles up threads and backpressure is explicit: when
the queue is full the newest sample is dropped with a warning. The rule
engine runs on its own timer and is not part of this sequence.

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from queue import Empty, Full, Queue
from typing import TYPE_CHECKING, Any, Callable, Mapping

from app.domain.actuator_commands import Command
from app.domain.automation_config import AutomationConfig
from app.domain.exceptions import PersistenceFailure
from app.domain.sensor_sample import SensorSample
from app.enums.events import WebSocketEvent
from app.utils.time import to_local, utc_now

if TYPE_CHECKING:
    from app.control_loops.vpd_control_loop import VPDControlLoop, VPDTickResult
    from app.domain.actuator_commands import DeviceStateTracker
    from app.services.application.automation_engine import AutomationEngine
    from app.services.application.light_scheduler import LightScheduler
    from app.services.application.watering_service import WateringService
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
    from app.services.hardware.safety_service import SafetyInterlock, SafetyResult
    from app.services.protocols import ConfigStore, LiveBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_QUEUE_SIZE = 50


@dataclass
class TickReport:
    """Everything one sample caused."""

    timestamp: datetime
    pump_stop_commands: list[Command] = field(default_factory=list)
    safety: "SafetyResult | None" = None
    stopped_by: str | None = None
    light_commands: list[Command] = field(default_factory=list)
    vpd: "VPDTickResult | None" = None
    vpd_skipped_reason: str | None = None
    watering_commands: list[Command] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def commands(self) -> list[Command]:
        vpd_commands = self.vpd.commands if self.vpd else []
        return [*self.pump_stop_commands, *self.light_commands, *vpd_commands, *self.watering_commands]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "pump_stop_commands": list(self.pump_stop_commands),
            "safety": self.safety.to_dict() if self.safety else None,
            "stopped_by": self.stopped_by,
            "light_commands": list(self.light_commands),
            "vpd": self.vpd.to_dict() if self.vpd else None,
            "vpd_skipped_reason": self.vpd_skipped_reason,
            "watering_commands": list(self.watering_commands),
            "errors": list(self.errors),
        }


class AutomationOrchestrator:
    """Runs the built-in policies for each sample and owns the manual override window."""

    def __init__(
        self,
        *,
        engine: "AutomationEngine",
        safety: "SafetyInterlock",
        vpd_loop: "VPDControlLoop",
        light_scheduler: "LightScheduler",
        watering: "WateringService",
        manual_dispatcher: "ActuatorDispatcher",
        automation_config: AutomationConfig | None = None,
        config_store: "ConfigStore | None" = None,
        state_tracker: "DeviceStateTracker | None" = None,
        broadcaster: "LiveBroadcaster | None" = None,
        sample_queue_size: int = DEFAULT_SAMPLE_QUEUE_SIZE,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.engine = engine
        self.safety = safety
        self.vpd_loop = vpd_loop
        self.light_scheduler = light_scheduler
        self.watering = watering
        self.manual_dispatcher = manual_dispatcher
        self.config_store = config_store
        self.state_tracker = state_tracker
        self.broadcaster = broadcaster
        self._clock = clock

        self._config = automation_config or AutomationConfig()
        self._config_lock = threading.Lock()
        self._override_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self.manual_override_until: datetime | None = None

        self._sample_queue_size = sample_queue_size
        self._queue: Queue[SensorSample] = Queue(maxsize=sample_queue_size)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.processed_count = 0
        self.dropped_count = 0
        self.error_count = 0
        self.last_report: TickReport | None = None

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            logger.warning("Automation orchestrator already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker_loop, daemon=True, name="AutomationOrchestrator")
        self._thread.start()
        logger.info("Automation orchestrator started (queue=%s)", self._sample_queue_size)

    def stop(self, wait: bool = True, timeout: float = 10.0) -> None:
        """Stop consuming samples; the sample in flight finishes first."""
        self._stop_event.set()
        if wait and self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Automation orchestrator stopped")

    def shutdown(self, wait: bool = True, timeout: float = 10.0) -> None:
        """Alias for stop(); matches other services' shutdown() convention."""
        self.stop(wait=wait, timeout=timeout)

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _worker_loop(self) -> None:
        logger.debug("Orchestrator worker started")
        while not self._stop_event.is_set():
            try:
                sample = self._queue.get(timeout=0.5)
            except Empty:
                continue
            try:
                self.process_sample(sample)
            except Exception as e:
                self.error_count += 1
                logger.error("Error processing sensor sample: %s", e, exc_info=True)
            finally:
                self._queue.task_done()
        logger.debug("Orchestrator worker ended")

    # ==================== Sample channel ====================

    def submit_sample(self, sample: SensorSample) -> bool:
        """Queue a sample for the worker. Returns False when it was dropped."""
        try:
            self._queue.put_nowait(sample)
            return True
        except Full:
            self.dropped_count += 1
            logger.warning(
                "Sample queue full (size=%d), dropping sample from %s (dropped=%d)",
                self._sample_queue_size,
                sample.timestamp.isoformat(),
                self.dropped_count,
            )
            return False

    # ==================== Per-sample policy ====================

    def process_sample(self, sample: SensorSample, now: datetime | None = None) -> TickReport:
        """Run pump runtime limit, safety, override gate, light, VPD and watering for one sample."""
        now = now or self._clock()
        report = TickReport(timestamp=now)
        self.engine.update_sensor_data(sample)
        config = self.get_automation_config()

        with self._tick_lock:
            report.pump_stop_commands = (
                self._guarded(report, "pump_runtime", self.watering.stop_overdue_pumps, config, now) or []
            )

            report.safety = self.safety.check(sample, config)
            if report.safety.tripped:
                report.stopped_by = "safety"
                self.watering.forget_running()
                return self._finish(report)

            if self.is_manual_override_active(now):
                report.stopped_by = "manual_override"
                return self._finish(report)

            local_now = to_local(now, config.timezone)
            report.light_commands = self._guarded(report, "light", self.light_scheduler.run, config, local_now) or []

            if sample.average_temperature() is None or sample.average_humidity() is None:
                report.vpd_skipped_reason = "no_valid_climate_readings"
                logger.warning("VPD skipped: no valid temperature/humidity readings")
            elif config.zone_based_vpd:
                report.vpd = self._guarded(report, "vpd_zones", self.vpd_loop.run_zones, sample, config.vpd_zones, now)
            else:
                report.vpd = self._guarded(report, "vpd", self.vpd_loop.run, sample, config, now)

            report.watering_commands = self._guarded(report, "watering", self.watering.run, sample, config, now) or []
            return self._finish(report)

    def _guarded(self, report: TickReport, step: str, fn: Callable[..., Any], *args: Any) -> Any:
        # One failing policy must not starve the others
        try:
            return fn(*args)
        except Exception as e:
            self.error_count += 1
            report.errors.append(f"{step}: {e}")
            logger.error("Automation step %s failed: %s", step, e, exc_info=True)
            return None

    def _finish(self, report: TickReport) -> TickReport:
        self.processed_count += 1
        self.last_report = report
        if report.commands and self.broadcaster is not None and self.state_tracker is not None:
            try:
                self.broadcaster.broadcast(WebSocketEvent.ACTUATOR_STATE_UPDATE.value, self.state_tracker.snapshot())
            except Exception as e:
                logger.debug("Device state broadcast failed: %s", e)
        return report

    # ==================== Manual override ====================

    def notify_manual_action(self, now: datetime | None = None) -> datetime:
        """Pause automation for ``manual_pause_minutes``. Returns the new end time."""
        now = now or self._clock()
        minutes = self.get_automation_config().manual_pause_minutes
        with self._override_lock:
            self.manual_override_until = now + timedelta(minutes=minutes)
            until = self.manual_override_until
        logger.info("Manual control detected, automation paused for %s min", minutes)
        return until

    def is_manual_override_active(self, now: datetime | None = None) -> bool:
        now = now or self._clock()
        with self._override_lock:
            return self.manual_override_until is not None and now < self.manual_override_until

    def send_manual_command(self, command: Mapping[str, Any], now: datetime | None = None) -> datetime:
        """Send a human-issued command and arm the override window once.

        The command goes straight to the dispatcher, so it never re-arms the
        pause on its own account.

        Raises:
            ActuatorDispatchFailure: the command could not be delivered
        """
        until = self.notify_manual_action(now)
        self.manual_dispatcher.send(dict(command))
        return until

    # ==================== Configuration ====================

    def get_automation_config(self) -> AutomationConfig:
        with self._config_lock:
            return self._config

    def update_automation_config(self, partial: Mapping[str, Any]) -> AutomationConfig:
        """Deep-merge ``partial`` into the current config and persist it.

        Raises:
            ValidationError: the merged configuration is invalid
        """
        with self._config_lock:
            updated = self._config.merged(partial)
            self._config = updated
        logger.info("Automation config updated: %s", sorted(partial))

        if self.config_store is not None:
            try:
                self.config_store.save_automation_config(updated)
            except PersistenceFailure as e:
                logger.error("Failed to persist automation config: %s", e)
        return updated

    # ==================== Status ====================

    def get_device_states(self) -> dict[str, Any]:
        states = self.state_tracker.snapshot() if self.state_tracker is not None else {}
        states["current_fan_speed"] = self.vpd_loop.current_fan_speed
        states["light_scheduled_on"] = self.light_scheduler.last_state
        with self._override_lock:
            until = self.manual_override_until
        states["manual_override_until"] = until.isoformat() if until else None
        return states

    def get_status(self) -> dict[str, Any]:
        now = self._clock()
        with self._override_lock:
            until = self.manual_override_until
        return {
            "running": self.is_running,
            "queue_depth": self._queue.qsize(),
            "queue_size": self._sample_queue_size,
            "processed": self.processed_count,
            "dropped": self.dropped_count,
            "errors": self.error_count,
            "manual_override_active": until is not None and now < until,
            "manual_override_until": until.isoformat() if until else None,
            "last_report": self.last_report.to_dict() if self.last_report else None,
            "engine": self.engine.get_status(),
            "vpd": self.vpd_loop.get_status(),
            "safety": self.safety.get_status(),
            "watering": self.watering.get_status(),
        }
