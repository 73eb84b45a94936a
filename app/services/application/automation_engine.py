"""
AutomationEngine: the if-then-else rule scheduler.

Runs on its own fixed-interval timer thread (default every 5 seconds),
independent of sample arrival. Each pass loads the enabled rules by priority
and walks every rule through the same gates:

    can_execute → dependencies enabled → conflict window → evaluate
    → select then/else → test mode (history only) → dispatch → statistics

A global re-entrant lock serializes passes, so two passes (timer and an
out-of-cycle ``process_rules`` call from the API) can never double-execute a
rule. The safety interlock never takes this lock.

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable

from app.domain.actuator_commands import rule_command
from app.domain.automation_config import AutomationConfig
from app.domain.exceptions import (
    ActuatorDispatchFailure,
    GrowBoxError,
    NotFoundError,
    PersistenceFailure,
    ValidationFailure,
)
from app.domain.rules import Action, DelayAction, DeviceAction, NotificationAction, Rule, RuleAction
from app.domain.sensor_sample import SensorSample
from app.enums.automation import RuleOutcome, RuleResult, TargetAction
from app.enums.events import NotificationSeverity
from app.utils.time import to_local, utc_now

if TYPE_CHECKING:
    from app.services.hardware.actuator_dispatcher import ActuatorDispatcher
    from app.services.protocols import AlertSink, RuleStore

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_DELAY_SECONDS = 300.0
MAX_TRIGGER_DEPTH = 1

STATISTICS_FIELDS = ("execution_count", "last_executed", "last_result")


class AutomationEngine:
    """
    Evaluates and executes user-defined automation rules.

    The engine is the only writer of rule execution statistics
    (``execution_count``, ``last_executed``, ``last_result``) and test history.
    """

    def __init__(
        self,
        rule_store: "RuleStore",
        dispatcher: "ActuatorDispatcher",
        *,
        alerts: "AlertSink | None" = None,
        config_provider: Callable[[], AutomationConfig] | None = None,
        check_interval_seconds: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the rule scheduler.

        Args:
            rule_store: Rule persistence (time-bounded wrapper in production)
            dispatcher: Actuator dispatcher for rule commands
            alerts: Sink for ``notification`` actions
            config_provider: Returns the current AutomationConfig (conflict window, timezone)
            check_interval_seconds: Timer period
            max_delay_seconds: Upper bound applied to ``delay`` actions
            clock: Returns the current aware UTC time
            sleep: Blocking wait used by ``delay`` actions
        """
        self.rule_store = rule_store
        self.dispatcher = dispatcher
        self.alerts = alerts
        self.config_provider = config_provider or AutomationConfig
        self.check_interval_seconds = check_interval_seconds
        self.max_delay_seconds = max_delay_seconds
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.RLock()
        self._sample_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._running = False

        self._last_sample: SensorSample | None = None
        self._pass_rules: dict[str, Rule] = {}
        self.last_pass_at: datetime | None = None
        self.last_pass_outcomes: dict[str, RuleOutcome] = {}
        self.pass_count = 0
        self.error_count = 0

    # ==================== Lifecycle ====================

    def start(self) -> bool:
        """Start the timer thread. Returns False when already running."""
        if self._running:
            logger.warning("Automation engine already running")
            return False

        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="AutomationEngine")
        self._thread.start()
        logger.info("Automation engine started (interval=%ss)", self.check_interval_seconds)
        return True

    def stop(self, wait: bool = True, timeout: float = 10.0) -> bool:
        """
        Stop scheduling new passes. A pass in flight is allowed to finish.

        Args:
            wait: Wait for the timer thread to finish
            timeout: Maximum wait time in seconds
        """
        if not self._running:
            return False

        self._running = False
        self._stop_event.set()
        if wait and self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Automation engine stopped")
        return True

    def shutdown(self, wait: bool = True, timeout: float = 10.0) -> None:
        """Alias for stop(); matches other services' shutdown() convention."""
        self.stop(wait=wait, timeout=timeout)

    def toggle(self) -> bool:
        """Start when stopped, stop when running. Returns the new running state."""
        if self._running:
            self.stop()
        else:
            self.start()
        return self._running

    @property
    def is_running(self) -> bool:
        return self._running

    def _run_loop(self) -> None:
        logger.debug("Automation engine loop started")
        while not self._stop_event.wait(self.check_interval_seconds):
            try:
                self.process_rules()
            except Exception as e:
                self.error_count += 1
                logger.error("Error in automation engine loop: %s", e, exc_info=True)
        logger.debug("Automation engine loop ended")

    # ==================== Sensor data ====================

    def update_sensor_data(self, sample: SensorSample) -> None:
        """Merge ``sample`` over the latest known readings.

        Readings absent from ``sample`` keep their previous value, so a
        partial telemetry message does not blank out other sensors.
        """
        with self._sample_lock:
            if self._last_sample is None:
                self._last_sample = sample
                return
            merged = self._last_sample.to_dict()
            for key, value in sample.to_dict().items():
                if value is None or (key == "soil" and not value):
                    continue
                merged[key] = value
            self._last_sample = SensorSample.from_dict(merged)

    @property
    def latest_sample(self) -> SensorSample:
        with self._sample_lock:
            return self._last_sample or SensorSample(timestamp=self._clock())

    # ==================== Rule processing ====================

    def process_rules(self) -> dict[str, RuleOutcome]:
        """Run one scheduler pass over all enabled rules.

        Returns the outcome per rule id. Never raises: a failing store load is
        logged and yields an empty result.
        """
        with self._lock:
            try:
                rules = self.rule_store.load_enabled_rules_by_priority()
            except GrowBoxError as exc:
                self.error_count += 1
                logger.error("Could not load automation rules: %s", exc)
                return {}

            self._pass_rules = {rule.rule_id: rule for rule in rules}
            outcomes: dict[str, RuleOutcome] = {}
            try:
                for rule in rules:
                    outcomes[rule.rule_id] = self._process_isolated(rule)
            finally:
                self._pass_rules = {}

            self.pass_count += 1
            self.last_pass_at = self._clock()
            self.last_pass_outcomes = outcomes
            return outcomes

    def _process_isolated(self, rule: Rule) -> RuleOutcome:
        try:
            return self.process_rule(rule)
        except Exception as exc:
            self.error_count += 1
            logger.error("Rule %r crashed: %s", rule.name, exc, exc_info=True)
            rule.last_result = RuleResult.FAILED
            self._save(rule, ("last_result",))
            return RuleOutcome.FAILED

    def process_rule(self, rule: Rule, depth: int = 0) -> RuleOutcome:
        """Gate, evaluate and (unless in test mode) execute one rule."""
        with self._lock:
            now = self._clock()
            config = self.config_provider()
            try:
                if not rule.can_execute(now):
                    return RuleOutcome.CANNOT_EXECUTE

                blocker = self._disabled_dependency(rule)
                if blocker is not None:
                    logger.info("Rule %r skipped: dependency %r not enabled", rule.name, blocker)
                    return RuleOutcome.DEPENDENCY_DISABLED

                conflict = self._active_conflict(rule, now, config.conflict_window_seconds)
                if conflict is not None:
                    logger.info("Rule %r skipped: conflict with %r", rule.name, conflict.name)
                    rule.last_result = RuleResult.SKIPPED
                    self._save(rule, ("last_result",))
                    return RuleOutcome.CONFLICT

                sample = self.latest_sample
                conditions_met = rule.evaluate(sample, to_local(now, config.timezone))
            except ValidationFailure as exc:
                logger.warning("Rule %r skipped, invalid definition: %s", rule.name, exc)
                return RuleOutcome.INVALID

            if rule.test_mode:
                rule.record_test_result(now, sample, conditions_met)
                logger.info(
                    "[TEST] Rule %r: conditions %s",
                    rule.name,
                    "met" if conditions_met else "not met",
                )
                self._save(rule, ("test_results",))
                return RuleOutcome.TEST_LOGGED

            actions = rule.select_actions(conditions_met)
            if not actions:
                return RuleOutcome.NOTHING_TO_DO

            logger.info(
                "Rule %r: executing %d action(s) (%s)",
                rule.name,
                len(actions),
                "conditions met" if conditions_met else "else branch",
            )
            try:
                for action in actions:
                    self._execute_action(action, rule, depth)
            except Exception as exc:
                logger.error("Rule %r failed: %s", rule.name, exc)
                rule.last_result = RuleResult.FAILED
                self._save(rule, ("last_result",))
                return RuleOutcome.FAILED

            rule.execution_count += 1
            rule.last_executed = self._clock()
            rule.last_result = RuleResult.SUCCESS
            self._save(rule, STATISTICS_FIELDS)
            return RuleOutcome.EXECUTED

    def _disabled_dependency(self, rule: Rule) -> str | None:
        """Id of the first dependency that is missing or disabled."""
        for dep_id in rule.depends_on:
            dependency = self._lookup_rule(dep_id)
            if dependency is None or not dependency.enabled:
                return dependency.name if dependency else dep_id
        return None

    def _active_conflict(self, rule: Rule, now: datetime, window_seconds: float) -> Rule | None:
        for other_id in rule.conflicts_with:
            other = self._lookup_rule(other_id)
            if other is None or not other.enabled or other.last_executed is None:
                continue
            if (now - other.last_executed).total_seconds() < window_seconds:
                return other
        return None

    def _lookup_rule(self, rule_id: str) -> Rule | None:
        rule = self._pass_rules.get(rule_id)
        if rule is not None:
            return rule
        try:
            return self.rule_store.get_rule(rule_id)
        except PersistenceFailure as exc:
            logger.error("Could not load rule %s: %s", rule_id, exc)
            return None

    # ==================== Actions ====================

    def _execute_action(self, action: Action, rule: Rule, depth: int) -> None:
        if isinstance(action, DeviceAction):
            command = rule_command(action.device, action.command, action.value)
            self.dispatcher.send(command)
            logger.info("[%s] command: %s", rule.name, command)

        elif isinstance(action, DelayAction):
            seconds = min(action.seconds, self.max_delay_seconds)
            if seconds < action.seconds:
                logger.warning("[%s] delay %.0fs capped at %.0fs", rule.name, action.seconds, seconds)
            logger.debug("[%s] delay %.1fs", rule.name, seconds)
            if seconds > 0:
                self._sleep(seconds)

        elif isinstance(action, NotificationAction):
            logger.info("[%s] notification: %s", rule.name, action.message)
            if self.alerts is not None:
                self.alerts.send_alert(f"Automation: {rule.name}", action.message, NotificationSeverity.INFO.value)

        elif isinstance(action, RuleAction):
            self._execute_rule_action(action, rule, depth)

    def _execute_rule_action(self, action: RuleAction, rule: Rule, depth: int) -> None:
        logger.info("[%s] rule action: %s -> %s", rule.name, action.target_rule, action.target_action)
        target = self._lookup_rule(action.target_rule)
        if target is None:
            logger.warning("[%s] target rule %s not found", rule.name, action.target_rule)
            return

        if action.target_action is TargetAction.TRIGGER:
            if depth >= MAX_TRIGGER_DEPTH:
                logger.warning(
                    "[%s] trigger of %r ignored: nested triggers are limited to depth %d",
                    rule.name,
                    target.name,
                    MAX_TRIGGER_DEPTH,
                )
                return
            self.process_rule(target, depth=depth + 1)
            return

        target.enabled = action.target_action is TargetAction.ENABLE
        self._save(target, ("enabled",))

    def _save(self, rule: Rule, fields) -> None:
        try:
            self.rule_store.save_rule(rule, fields=fields)
        except PersistenceFailure as exc:
            logger.error("Could not persist rule %r (%s): %s", rule.name, ", ".join(fields), exc)

    # ==================== Dry run & status ====================

    def simulate_rule(self, rule_id: str, sample: SensorSample | None = None) -> dict[str, Any]:
        """Evaluate a rule without dispatching or persisting anything.

        Raises:
            NotFoundError: no rule with ``rule_id``
        """
        rule = self.rule_store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")

        now = self._clock()
        config = self.config_provider()
        test_sample = sample or self.latest_sample
        conditions_met = rule.evaluate(test_sample, to_local(now, config.timezone))
        return {
            "rule_id": rule.rule_id,
            "rule_name": rule.name,
            "conditions_met": conditions_met,
            "sensor_data": test_sample.to_dict(),
            "actions_to_execute": [action.to_dict() for action in rule.select_actions(conditions_met)],
            "can_execute": rule.can_execute(now),
            "execution_count": rule.execution_count,
            "last_executed": rule.last_executed.isoformat() if rule.last_executed else None,
        }

    def trigger_rule(self, rule_id: str) -> dict[str, Any]:
        """Run one rule now, outside the timer, through the usual gates.

        Raises:
            NotFoundError: no rule with ``rule_id``
        """
        rule = self.rule_store.get_rule(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule {rule_id} not found")

        outcome = self.process_rule(rule)
        logger.info("Rule %r triggered manually: %s", rule.name, outcome.value)
        return {
            "rule_id": rule.rule_id,
            "outcome": outcome.value,
            "execution_count": rule.execution_count,
            "last_executed": rule.last_executed.isoformat() if rule.last_executed else None,
            "last_result": rule.last_result.value if rule.last_result else None,
        }

    def get_status(self) -> dict[str, Any]:
        with self._sample_lock:
            last_sample = self._last_sample
        return {
            "running": self._running,
            "check_interval_seconds": self.check_interval_seconds,
            "pass_count": self.pass_count,
            "error_count": self.error_count,
            "last_pass_at": self.last_pass_at.isoformat() if self.last_pass_at else None,
            "last_pass_outcomes": {rule_id: outcome.value for rule_id, outcome in self.last_pass_outcomes.items()},
            "last_sensor_data": last_sample.to_dict() if last_sample else None,
            "dispatcher": self.dispatcher.stats(),
        }
