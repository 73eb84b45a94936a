"""
Safety interlock for hard environmental limits.

Features:
    - Over-temperature trip (hottest valid zone above the limit)
    - Gas concentration trip
    - All-stop command set sent through a dedicated dispatcher
    - Best-effort critical alert and live broadcast

A trip is a control-flow outcome, not an error: :meth:`SafetyInterlock.check`
returns a :class:`SafetyResult` and the orchestrator stops the tick.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from app.domain.actuator_commands import all_stop_commands
from app.domain.sensor_sample import SensorSample
from app.enums.events import NotificationSeverity, WebSocketEvent

if TYPE_CHECKING:
    from app.domain.automation_config import AutomationConfig
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
    from app.services.protocols import AlertSink, LiveBroadcaster


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SafetyResult:
    tripped: bool
    reason: str | None = None
    max_temp: float | None = None
    gas: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"tripped": self.tripped, "reason": self.reason, "max_temp": self.max_temp, "gas": self.gas}


class SafetyInterlock:
    """
    Safety interlock evaluated first on every sample.

    Ignores the manual-override window and never touches the rule
    scheduler's lock: it owns its own dispatcher (and worker pool) to the
    actuator channel.
    """

    def __init__(
        self,
        dispatcher: "ActuatorDispatcher",
        config_provider,
        *,
        alerts: "AlertSink | None" = None,
        broadcaster: "LiveBroadcaster | None" = None,
    ):
        """
        Initialize safety interlock.

        Args:
            dispatcher: Dispatcher reserved for all-stop commands
            config_provider: Callable returning the current AutomationConfig
            alerts: Sink for the critical alert
            broadcaster: Live channel to dashboard clients
        """
        self.dispatcher = dispatcher
        self.config_provider = config_provider
        self.alerts = alerts
        self.broadcaster = broadcaster
        self.trip_count = 0
        self.last_trip: SafetyResult | None = None

    def evaluate(self, sample: SensorSample, config: "AutomationConfig | None" = None) -> SafetyResult:
        """Pure check of ``sample`` against the configured limits."""
        config = config or self.config_provider()
        max_temp = sample.max_temperature()
        gas = sample.gas

        if max_temp is not None and max_temp > config.max_temp_safe:
            return SafetyResult(
                tripped=True,
                reason=f"Over-temperature: {max_temp:.1f}°C (limit {config.max_temp_safe:.1f}°C)",
                max_temp=max_temp,
                gas=gas,
            )
        if gas is not None and gas > config.max_gas_safe:
            return SafetyResult(
                tripped=True,
                reason=f"Gas alarm: {gas:.0f} (limit {config.max_gas_safe:.0f})",
                max_temp=max_temp,
                gas=gas,
            )
        return SafetyResult(tripped=False, max_temp=max_temp, gas=gas)

    def check(self, sample: SensorSample, config: "AutomationConfig | None" = None) -> SafetyResult:
        """Evaluate and, on trip, shut everything off and raise the alarm."""
        result = self.evaluate(sample, config)
        if not result.tripped:
            return result

        self.trip_count += 1
        self.last_trip = result
        logger.critical("EMERGENCY STOP: %s", result.reason)

        # Shutoff first; alerting must never delay or prevent it
        failures = self.dispatcher.send_all(all_stop_commands())
        if failures:
            logger.error("Emergency stop: %d of the all-stop commands failed", len(failures))

        self._broadcast(result)
        self._alert(result)
        return result

    def _broadcast(self, result: SafetyResult) -> None:
        if self.broadcaster is None:
            return
        try:
            self.broadcaster.broadcast(
                WebSocketEvent.ALERT.value,
                {
                    "type": "alert",
                    "level": NotificationSeverity.CRITICAL.value,
                    "message": f"EMERGENCY STOP: {result.reason}",
                },
            )
        except Exception as exc:
            logger.warning("Safety broadcast failed: %s", exc)

    def _alert(self, result: SafetyResult) -> None:
        if self.alerts is None:
            return
        try:
            self.alerts.send_alert(
                "SYSTEM EMERGENCY STOP",
                f"The system was shut down.\nReason: {result.reason}",
                NotificationSeverity.CRITICAL.value,
            )
        except Exception as exc:
            logger.warning("Safety alert could not be queued: %s", exc)

    def get_status(self) -> dict[str, Any]:
        return {
            "trip_count": self.trip_count,
            "last_trip": self.last_trip.to_dict() if self.last_trip else None,
        }
