"""
VPDControlLoop: closed-loop VPD → exhaust fan controller.

Invoked once per sensor sample by the automation orchestrator. Owns the
current fan speed, the last VPD reading and the last update timestamp, and
is the only writer of the runtime fields of :class:`VPDConfig`.

Gates, in order (each one may end the tick):
    1. control disabled → simple on/off fan fallback
    2. update interval not yet elapsed
    3. no VPD reading
    4. hysteresis: VPD barely moved and the last change is too recent
    5. emergency thresholds → emergency action, controller bypassed
    6-7. fan speed controller, command sent only when the speed changes

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

from app.control_loops.fan_speed import next_fan_speed
from app.domain.actuator_commands import Command, device_switch, fan_pwm_command, fan_speed_command
from app.domain.automation_config import deep_merge
from app.domain.exceptions import ActuatorDispatchFailure, NotFoundError, PersistenceFailure, ValidationError
from app.domain.sensor_sample import ZONES, SensorSample
from app.domain.vpd import TargetBand, VPDAnalysis, VPDConfig, analyze_vpd, check_vpd_config, vpd_report
from app.enums.automation import EmergencyAction
from app.enums.events import NotificationSeverity, WebSocketEvent
from app.utils.psychrometrics import calculate_vpd
from app.utils.time import utc_now

if TYPE_CHECKING:
    from app.domain.automation_config import AutomationConfig
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
    from app.services.protocols import AlertSink, ConfigStore, LiveBroadcaster

logger = logging.getLogger(__name__)

DEFAULT_FAN_SPEED = 50
ZONE_DEVIATION_KPA = 0.1
ZONE_STEP = 10
RUNTIME_FIELDS = frozenset({"last_update", "statistics", "target_range"})


@dataclass
class VPDTickResult:
    """What one control-loop tick did."""

    vpd: float | None = None
    skipped_reason: str | None = None
    commands: list[Command] = field(default_factory=list)
    fan_speed: int | None = None
    emergency: EmergencyAction | None = None
    analysis: VPDAnalysis | None = None
    zone: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vpd": round(self.vpd, 3) if self.vpd is not None else None,
            "skipped_reason": self.skipped_reason,
            "commands": list(self.commands),
            "fan_speed": self.fan_speed,
            "emergency": self.emergency.value if self.emergency else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "zone": self.zone,
        }


class VPDControlLoop:
    """Stateful VPD controller driving the exhaust fan."""

    def __init__(
        self,
        config: VPDConfig,
        dispatcher: "ActuatorDispatcher",
        *,
        config_store: "ConfigStore | None" = None,
        alerts: "AlertSink | None" = None,
        broadcaster: "LiveBroadcaster | None" = None,
        initial_fan_speed: int = DEFAULT_FAN_SPEED,
    ):
        """
        Initialize the control loop.

        Args:
            config: Controller configuration, mutated in place by this loop
            dispatcher: Actuator dispatcher used for fan commands
            config_store: Store the configuration is written back to after changes
            alerts: Sink for critical VPD notifications
            broadcaster: Optional live channel for ``vpd_update`` events
            initial_fan_speed: Fan speed assumed before the first command
        """
        self.config = config
        self.dispatcher = dispatcher
        self.config_store = config_store
        self.alerts = alerts
        self.broadcaster = broadcaster

        self.current_fan_speed = initial_fan_speed
        self.last_vpd: float | None = None
        self.last_update: datetime | None = None
        self.last_change_at: datetime | None = config.last_update.timestamp
        self._lock = threading.RLock()

    # ------------------------------------------------------------------ #
    # Main loop
    # ------------------------------------------------------------------ #

    def run(
        self,
        sample: SensorSample,
        automation_config: "AutomationConfig",
        now: datetime | None = None,
    ) -> VPDTickResult:
        """Run one tick against ``sample``."""
        now = now or utc_now()
        with self._lock:
            cfg = self.config
            vpd = sample.vpd()

            if not cfg.enabled:
                return self._run_fallback(vpd, automation_config)

            if self._interval_pending(now):
                return VPDTickResult(vpd=vpd, skipped_reason="interval", fan_speed=self.current_fan_speed)

            if vpd is None:
                logger.warning("VPD: no valid temperature/humidity readings")
                return VPDTickResult(skipped_reason="no_reading", fan_speed=self.current_fan_speed)

            if self._hysteresis_blocks(vpd, now):
                return VPDTickResult(vpd=vpd, skipped_reason="hysteresis", fan_speed=self.current_fan_speed)

            band = cfg.target_range
            analysis = analyze_vpd(vpd, band)
            result = VPDTickResult(vpd=vpd, analysis=analysis)

            emergency = self._emergency_for(vpd)
            if emergency is not None:
                kind, action = emergency
                self._apply_emergency(kind, action, vpd, now, result)
            else:
                self._apply_controller(vpd, band, analysis, now, result)

            self.last_vpd = vpd
            self.last_update = now
            result.fan_speed = self.current_fan_speed
            self._broadcast(result, band)
            return result

    def run_zones(
        self,
        sample: SensorSample,
        zones: Mapping[str, TargetBand],
        now: datetime | None = None,
    ) -> VPDTickResult:
        """Zone-based variant: steer by the zone furthest from its own band.

        A zone below its band raises the fan by 10 %, a zone above lowers it
        by 10 % (clamped to 0-100). Deviations under 0.1 kPa are ignored.
        """
        now = now or utc_now()
        with self._lock:
            if self._interval_pending(now):
                return VPDTickResult(skipped_reason="interval", fan_speed=self.current_fan_speed)

            worst_zone: str | None = None
            worst_vpd: float | None = None
            worst_deviation = 0.0
            measured = 0
            for zone in ZONES:
                band = zones.get(zone)
                temp = sample.zone_temperature(zone)
                humidity = sample.zone_humidity(zone)
                if band is None or not temp or not humidity or temp <= 0 or humidity <= 0:
                    continue
                zone_vpd = calculate_vpd(temp, humidity)
                if zone_vpd is None:
                    continue
                measured += 1
                if zone_vpd < band.min:
                    deviation = band.min - zone_vpd
                elif zone_vpd > band.max:
                    deviation = zone_vpd - band.max
                else:
                    deviation = 0.0
                if deviation > worst_deviation:
                    worst_zone, worst_vpd, worst_deviation = zone, zone_vpd, deviation

            if not measured:
                logger.warning("Zone VPD: no valid zone readings")
                return VPDTickResult(skipped_reason="no_reading", fan_speed=self.current_fan_speed)

            result = VPDTickResult(vpd=worst_vpd, zone=worst_zone)
            if worst_zone is None or worst_deviation < ZONE_DEVIATION_KPA:
                logger.debug("Zone VPD: all zones within target")
            else:
                band = zones[worst_zone]
                if worst_vpd < band.min:
                    new_speed = min(100, self.current_fan_speed + ZONE_STEP)
                else:
                    new_speed = max(0, self.current_fan_speed - ZONE_STEP)
                logger.info(
                    "Zone VPD: critical zone %s at %.2f kPa (target %.2f-%.2f), fan %s%% -> %s%%",
                    worst_zone,
                    worst_vpd,
                    band.min,
                    band.max,
                    self.current_fan_speed,
                    new_speed,
                )
                if new_speed != self.current_fan_speed and self._send(fan_pwm_command(new_speed), result):
                    self.current_fan_speed = new_speed
                    self.last_change_at = now

            if worst_vpd is not None:
                self.last_vpd = worst_vpd
            self.last_update = now
            result.fan_speed = self.current_fan_speed
            return result

    # ------------------------------------------------------------------ #
    # Gates
    # ------------------------------------------------------------------ #

    def _run_fallback(self, vpd: float | None, automation_config: "AutomationConfig") -> VPDTickResult:
        """Two-state fan policy used while closed-loop control is off."""
        result = VPDTickResult(vpd=vpd, fan_speed=self.current_fan_speed)
        if vpd is None:
            result.skipped_reason = "no_reading"
            return result
        if vpd < automation_config.vpd_min:
            self._send(device_switch("FAN_EXHAUST", True), result)
        elif vpd > automation_config.vpd_max:
            self._send(device_switch("FAN_EXHAUST", False), result)
        return result

    def _interval_pending(self, now: datetime) -> bool:
        if self.last_update is None:
            return False
        elapsed = (now - self.last_update).total_seconds()
        return elapsed < self.config.update_interval_seconds

    def _hysteresis_blocks(self, vpd: float, now: datetime) -> bool:
        hyst = self.config.hysteresis
        if not hyst.enabled or self.last_vpd is None:
            return False
        reference = self.last_change_at or self.last_update
        if reference is None:
            return False
        small_change = abs(vpd - self.last_vpd) < hyst.threshold_kpa
        too_soon = (now - reference).total_seconds() < hyst.min_seconds_between_changes
        return small_change and too_soon

    def _emergency_for(self, vpd: float) -> tuple[str, EmergencyAction] | None:
        emergency = self.config.emergency
        if not emergency.enabled:
            return None
        if vpd < emergency.critical_low.threshold:
            return "low", emergency.critical_low.action
        if vpd > emergency.critical_high.threshold:
            return "high", emergency.critical_high.action
        return None

    # ------------------------------------------------------------------ #
    # Actions
    # ------------------------------------------------------------------ #

    def _apply_emergency(
        self,
        kind: str,
        action: EmergencyAction,
        vpd: float,
        now: datetime,
        result: VPDTickResult,
    ) -> None:
        cfg = self.config
        result.emergency = action
        logger.warning("VPD EMERGENCY (%s): %.2f kPa, action=%s", kind, vpd, action)

        if action in (EmergencyAction.MIN_FAN, EmergencyAction.MAX_FAN):
            speed = cfg.fan_limits.min if action is EmergencyAction.MIN_FAN else cfg.fan_limits.max
            if self._send(fan_speed_command(speed), result):
                self.current_fan_speed = speed
                self.last_change_at = now
        elif action is EmergencyAction.DISABLE:
            cfg.enabled = False
            self._persist()
            logger.warning("VPD control disabled by emergency handler")
            if cfg.notifications.enabled and cfg.notifications.on_disable:
                self._alert(
                    "VPD control disabled",
                    f"Automatic VPD control was switched off at {vpd:.2f} kPa.",
                    NotificationSeverity.WARNING,
                )

        if cfg.notifications.enabled and cfg.notifications.on_critical:
            label = "too low" if kind == "low" else "too high"
            self._alert(
                f"Critical VPD: {label}",
                f"VPD: {vpd:.2f} kPa\nAction: {action.value}",
                NotificationSeverity.CRITICAL,
            )

    def _apply_controller(
        self,
        vpd: float,
        band: TargetBand,
        analysis: VPDAnalysis,
        now: datetime,
        result: VPDTickResult,
    ) -> None:
        cfg = self.config
        proposed = next_fan_speed(vpd, band, self.current_fan_speed, cfg.aggressiveness)
        new_speed = max(cfg.fan_limits.min, min(cfg.fan_limits.max, proposed))
        if new_speed == self.current_fan_speed:
            return

        previous = self.current_fan_speed
        if not self._send(fan_speed_command(new_speed), result):
            return

        cfg.update_statistics(vpd, analysis.in_range, now)
        cfg.log_action(vpd, new_speed, f"{analysis.status.value}: {analysis.recommendation}", now)
        if cfg.log_changes:
            logger.info(
                "VPD %.2f kPa (%s) -> fan %s%% -> %s%%",
                vpd,
                analysis.status.value,
                previous,
                new_speed,
            )
        self.current_fan_speed = new_speed
        self.last_change_at = now
        self._persist()

    def _send(self, command: Command, result: VPDTickResult) -> bool:
        try:
            self.dispatcher.send(command)
        except ActuatorDispatchFailure as exc:
            logger.error("VPD command failed: %s", exc)
            return False
        result.commands.append(command)
        return True

    def _persist(self) -> None:
        if self.config_store is None:
            return
        try:
            self.config_store.save_vpd_config(self.config)
        except PersistenceFailure as exc:
            # In-memory state stays authoritative until the next save
            logger.error("Failed to persist VPD config: %s", exc)

    def _alert(self, title: str, message: str, severity: NotificationSeverity) -> None:
        if self.alerts is None:
            return
        try:
            self.alerts.send_alert(title, message, severity.value)
        except Exception as exc:
            logger.warning("VPD alert could not be queued: %s", exc)

    def _broadcast(self, result: VPDTickResult, band: TargetBand) -> None:
        if self.broadcaster is None or result.vpd is None:
            return
        try:
            self.broadcaster.broadcast(
                WebSocketEvent.VPD_UPDATE.value,
                {
                    "vpd": round(result.vpd, 2),
                    "fan_speed": self.current_fan_speed,
                    "status": result.analysis.status.value if result.analysis else None,
                    "target": band.to_dict(),
                    "emergency": result.emergency.value if result.emergency else None,
                },
            )
        except Exception as exc:
            logger.debug("VPD broadcast failed: %s", exc)

    # ------------------------------------------------------------------ #
    # Management
    # ------------------------------------------------------------------ #

    def get_config(self) -> dict[str, Any]:
        with self._lock:
            return self.config.to_dict()

    def update_config(self, partial: Mapping[str, Any]) -> VPDConfig:
        """Deep-merge ``partial`` into the configuration and persist it.

        ``last_update`` and ``statistics`` belong to the loop and are kept.

        Raises:
            ValidationError: the merged configuration is invalid
        """
        settings = {key: value for key, value in partial.items() if key not in RUNTIME_FIELDS}
        with self._lock:
            try:
                updated = VPDConfig.from_dict(deep_merge(self.config.to_dict(), settings))
            except (TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid VPD config: {exc}") from exc
            check_vpd_config(updated)
            updated.last_update = self.config.last_update
            updated.statistics = self.config.statistics
            self.config = updated
            self._persist()
        logger.info("VPD config updated: %s", sorted(settings))
        return updated

    def reset_config(self) -> VPDConfig:
        """Restore the control settings to their defaults; statistics are kept."""
        defaults = VPDConfig()
        with self._lock:
            cfg = self.config
            cfg.enabled = defaults.enabled
            cfg.grow_stage = defaults.grow_stage
            cfg.custom_target.enabled = False
            cfg.aggressiveness = defaults.aggressiveness
            cfg.fan_limits = defaults.fan_limits
            cfg.update_interval_seconds = defaults.update_interval_seconds
            self._persist()
        logger.info("VPD config reset to defaults")
        return cfg

    def reset_statistics(self, now: datetime | None = None) -> VPDConfig:
        with self._lock:
            self.config.reset_statistics(now or utc_now())
            self._persist()
        logger.info("VPD statistics reset")
        return self.config

    def set_enabled(self, enabled: bool) -> VPDConfig:
        """Switch closed-loop control on or off and persist the choice."""
        with self._lock:
            self.config.enabled = bool(enabled)
            self._persist()
        logger.info("Automatic VPD control %s", "enabled" if enabled else "disabled")
        return self.config

    def analyze(self, sample: SensorSample) -> dict[str, Any]:
        """Current VPD of ``sample`` against the configured band.

        Raises:
            NotFoundError: the sample has no usable temperature or humidity
        """
        temperature = sample.average_temperature()
        humidity = sample.average_humidity()
        with self._lock:
            band = self.config.target_range
            auto_control = {"enabled": self.config.enabled, "grow_stage": self.config.grow_stage.value}
        report = None
        if temperature is not None and humidity is not None:
            report = vpd_report(temperature, humidity, band)
        if report is None:
            raise NotFoundError("No temperature/humidity reading available")
        report["current"]["timestamp"] = sample.timestamp.isoformat()
        report["auto_control"] = auto_control
        return report

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def get_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "enabled": self.config.enabled,
                "current_fan_speed": self.current_fan_speed,
                "last_vpd": round(self.last_vpd, 3) if self.last_vpd is not None else None,
                "last_update": self.last_update.isoformat() if self.last_update else None,
                "target_range": self.config.target_range.to_dict(),
                "aggressiveness": self.config.aggressiveness.value,
                "statistics": self.config.to_dict()["statistics"],
            }
