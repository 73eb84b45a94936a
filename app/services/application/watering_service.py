"""
Soil-moisture watering policy.

Two modes share one cooldown map keyed by pump id:

* group mode: a pump waters when the average of its valid readings
  (``1 < m <= 100``) is below ``dry_threshold``;
* per-plant mode: a pump waters when any enabled slot reads
  ``0 < m < threshold`` and the group has at least one valid reading.

A pump this service started is switched off again once it has run for
``pump_max_runtime_minutes``; the orchestrator checks on every sample.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.domain.actuator_commands import Command, pump_command
from app.domain.exceptions import ActuatorDispatchFailure
from app.domain.sensor_sample import SensorSample
from app.enums.events import NotificationSeverity

if TYPE_CHECKING:
    from app.domain.automation_config import AutomationConfig
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
    from app.services.protocols import AlertSink

logger = logging.getLogger(__name__)


def _valid_moisture(value: float | None) -> bool:
    return value is not None and 1 < value <= 100


@dataclass(frozen=True)
class WateringDecision:
    pump_id: int
    average: float
    dry_slots: tuple[int, ...] = ()


class WateringService:
    """Decides and starts automatic watering per pump group."""

    def __init__(self, dispatcher: "ActuatorDispatcher", *, alerts: "AlertSink | None" = None):
        self.dispatcher = dispatcher
        self.alerts = alerts
        self.last_watering: dict[int, datetime] = {}
        self.running_since: dict[int, datetime] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Decisions (pure)
    # ------------------------------------------------------------------

    def group_decision(self, pump_id: int, sample: SensorSample, config: "AutomationConfig") -> WateringDecision | None:
        readings = [sample.soil_reading(slot.slot_index) for slot in config.slots_for_pump(pump_id)]
        valid = [m for m in readings if _valid_moisture(m)]
        if not valid:
            return None
        average = sum(valid) / len(valid)
        if average >= config.dry_threshold:
            return None
        return WateringDecision(pump_id=pump_id, average=average)

    def plant_decision(self, pump_id: int, sample: SensorSample, config: "AutomationConfig") -> WateringDecision | None:
        slots = [slot for slot in config.slots_for_pump(pump_id) if slot.enabled]
        valid = [m for m in (sample.soil_reading(s.slot_index) for s in slots) if _valid_moisture(m)]
        if not valid:
            return None

        dry = []
        for slot in slots:
            moisture = sample.soil_reading(slot.slot_index)
            if moisture is not None and 0 < moisture < config.slot_threshold(slot):
                dry.append(slot.slot_index)
        if not dry:
            return None
        return WateringDecision(pump_id=pump_id, average=sum(valid) / len(valid), dry_slots=tuple(dry))

    def cooldown_elapsed(self, pump_id: int, config: "AutomationConfig", now: datetime) -> bool:
        last = self.last_watering.get(pump_id)
        if last is None:
            return True
        return (now - last).total_seconds() > config.cooldown_minutes * 60

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def run(self, sample: SensorSample, config: "AutomationConfig", now: datetime) -> list[Command]:
        """Start every pump whose group needs water and is out of cooldown."""
        sent: list[Command] = []
        per_plant = config.plant_specific_enabled
        with self._lock:
            for pump_id in config.pump_ids():
                if per_plant:
                    decision = self.plant_decision(pump_id, sample, config)
                else:
                    decision = self.group_decision(pump_id, sample, config)
                if decision is None or not self.cooldown_elapsed(pump_id, config, now):
                    continue

                command = pump_command(pump_id, True)
                try:
                    self.dispatcher.send(command)
                except ActuatorDispatchFailure as exc:
                    logger.error("Watering pump %s failed: %s", pump_id, exc)
                    continue

                self.last_watering[pump_id] = now
                self.running_since[pump_id] = now
                sent.append(command)
                self._notify(decision, per_plant)
        return sent

    def stop_overdue_pumps(self, config: "AutomationConfig", now: datetime) -> list[Command]:
        """Switch off every pump that has been on for ``pump_max_runtime_minutes``.

        A pump whose off command fails stays tracked and is retried next tick.
        """
        limit = config.pump_max_runtime_minutes * 60
        sent: list[Command] = []
        with self._lock:
            for pump_id, since in sorted(self.running_since.items()):
                runtime = (now - since).total_seconds()
                if runtime < limit:
                    continue

                command = pump_command(pump_id, False)
                try:
                    self.dispatcher.send(command)
                except ActuatorDispatchFailure as exc:
                    logger.error("Auto-off of pump %s failed: %s", pump_id, exc)
                    continue

                del self.running_since[pump_id]
                sent.append(command)
                logger.warning("Pump %s ran %.0fs (max %.0fs), switched off", pump_id, runtime, limit)
                self._alert(
                    f"Pump {pump_id} auto-off",
                    f"Pump {pump_id} was switched off after {runtime / 60:.1f} min "
                    f"(max {config.pump_max_runtime_minutes:g} min)",
                    NotificationSeverity.WARNING,
                )
        return sent

    def forget_running(self) -> None:
        """Drop runtime tracking after something else switched every pump off."""
        with self._lock:
            self.running_since.clear()

    def _notify(self, decision: WateringDecision, per_plant: bool) -> None:
        if per_plant:
            title = f"Plant watering (pump {decision.pump_id})"
            message = f"{len(decision.dry_slots)} plant(s) need water\nAverage: {decision.average:.1f}%"
        else:
            title = f"Automatic watering (pump {decision.pump_id})"
            message = f"Average moisture: {decision.average:.1f}%"
        logger.info("%s: %s", title, message.replace("\n", " | "))
        self._alert(title, message, NotificationSeverity.INFO)

    def _alert(self, title: str, message: str, severity: NotificationSeverity) -> None:
        if self.alerts is None:
            return
        try:
            self.alerts.send_alert(title, message, severity.value)
        except Exception as exc:
            logger.warning("Watering alert could not be queued: %s", exc)

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "last_watering": {str(pump_id): ts.isoformat() for pump_id, ts in self.last_watering.items()},
                "running_since": {str(pump_id): ts.isoformat() for pump_id, ts in self.running_since.items()},
            }
