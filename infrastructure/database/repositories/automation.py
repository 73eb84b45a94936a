from __future__ import annotations

import copy
import logging
import threading
from typing import Any, Iterable

from app.domain.automation_config import AutomationConfig
from app.domain.exceptions import ValidationError, ValidationFailure
from app.domain.rules import Rule
from app.domain.vpd import VPDConfig
from app.utils.time import utc_now
from infrastructure.database.ops.automation import AutomationOperations
from infrastructure.utils.structured_fields import dump_json_field, parse_json_list

logger = logging.getLogger(__name__)

VPD_CONFIG_KEY = "vpd"
AUTOMATION_CONFIG_KEY = "automation"

# Rule attribute -> column, where they differ
_ATTRIBUTE_COLUMNS = {"group": "rule_group"}
_JSON_COLUMNS = ("conditions", "actions", "else_actions", "depends_on", "conflicts_with", "tags", "test_results")
_BOOL_COLUMNS = ("enabled", "test_mode")


def rule_to_row(rule: Rule) -> dict[str, Any]:
    """Flatten a rule into AutomationRules column values."""
    doc = rule.to_dict()
    return {
        "name": doc["name"],
        "description": doc["description"],
        "conditions": dump_json_field(doc["conditions"]),
        "actions": dump_json_field(doc["actions"]),
        "else_actions": dump_json_field(doc["elseActions"]),
        "enabled": 1 if doc["enabled"] else 0,
        "priority": doc["priority"],
        "cooldown": doc["cooldown"],
        "max_executions": doc["maxExecutions"],
        "execution_count": doc["executionCount"],
        "last_executed": doc["lastExecuted"],
        "last_result": doc["lastResult"],
        "depends_on": dump_json_field(doc["dependsOn"]),
        "conflicts_with": dump_json_field(doc["conflictsWith"]),
        "rule_group": doc["group"],
        "tags": dump_json_field(doc["tags"]),
        "test_mode": 1 if doc["testMode"] else 0,
        "test_results": dump_json_field(doc["testResults"]),
        "created_at": doc["createdAt"],
    }


def row_to_rule(row: dict[str, Any]) -> Rule:
    """
    Rebuild a rule from a stored row.

    Raises:
        ValidationFailure: the stored document is malformed
    """
    return Rule.from_dict(
        {
            "id": row.get("rule_id"),
            "name": row.get("name"),
            "description": row.get("description"),
            "conditions": parse_json_list(row.get("conditions"), "conditions"),
            "actions": parse_json_list(row.get("actions"), "actions"),
            "elseActions": parse_json_list(row.get("else_actions"), "else_actions"),
            "enabled": bool(row.get("enabled", 1)),
            "priority": row.get("priority", 50),
            "cooldown": row.get("cooldown") or 0,
            "maxExecutions": row.get("max_executions") or 0,
            "executionCount": row.get("execution_count") or 0,
            "lastExecuted": row.get("last_executed"),
            "lastResult": row.get("last_result"),
            "dependsOn": parse_json_list(row.get("depends_on"), "depends_on"),
            "conflictsWith": parse_json_list(row.get("conflicts_with"), "conflicts_with"),
            "group": row.get("rule_group"),
            "tags": parse_json_list(row.get("tags"), "tags"),
            "testMode": bool(row.get("test_mode", 0)),
            "testResults": parse_json_list(row.get("test_results"), "test_results"),
            "createdAt": row.get("created_at"),
        }
    )


class SQLiteRuleStore:
    """Facade providing typed access to automation rules."""

    def __init__(self, backend: AutomationOperations) -> None:
        self._backend = backend

    def load_enabled_rules_by_priority(self) -> list[Rule]:
        rules: list[Rule] = []
        for row in self._backend.fetch_enabled_automation_rules():
            try:
                rules.append(row_to_rule(row))
            except ValidationFailure as exc:
                logger.error("Skipping malformed rule %s: %s", row.get("rule_id"), exc)
        return rules

    def get_rule(self, rule_id: str) -> Rule | None:
        row = self._backend.fetch_automation_rule(rule_id)
        if row is None:
            return None
        try:
            return row_to_rule(row)
        except ValidationFailure as exc:
            logger.error("Stored rule %s is malformed: %s", rule_id, exc)
            return None

    def save_rule(self, rule: Rule, fields: Iterable[str] | None = None) -> None:
        """Insert or update ``rule``; with ``fields`` only those columns change."""
        row = rule_to_row(rule)
        if fields is None:
            self._backend.upsert_automation_rule(rule.rule_id, row)
            return

        columns = [_ATTRIBUTE_COLUMNS.get(name, name) for name in fields]
        touched = self._backend.update_automation_rule_fields(rule.rule_id, {c: row[c] for c in columns})
        if touched == 0:
            # Rule was never stored, write all of it
            self._backend.upsert_automation_rule(rule.rule_id, row)

    def delete_rules(self, rule_ids: Iterable[str]) -> int:
        return self._backend.delete_automation_rules(rule_ids)


class SQLiteConfigStore:
    """VPD and automation settings kept as JSON documents in SystemConfig."""

    def __init__(self, backend: AutomationOperations) -> None:
        self._backend = backend

    def get_vpd_config(self) -> VPDConfig:
        stored = self._backend.get_system_config(VPD_CONFIG_KEY)
        try:
            return VPDConfig.from_dict(stored)
        except (TypeError, ValueError) as exc:
            logger.error("Stored VPD config is invalid, using defaults: %s", exc)
            return VPDConfig()

    def save_vpd_config(self, config: VPDConfig) -> None:
        self._backend.save_system_config(VPD_CONFIG_KEY, config.to_dict())

    def get_automation_config(self) -> AutomationConfig:
        stored = self._backend.get_system_config(AUTOMATION_CONFIG_KEY)
        try:
            return AutomationConfig.from_dict(stored)
        except ValidationError as exc:
            logger.error("Stored automation config is invalid, using defaults: %s", exc)
            return AutomationConfig()

    def save_automation_config(self, config: AutomationConfig) -> None:
        self._backend.save_system_config(AUTOMATION_CONFIG_KEY, config.to_dict())


class InMemoryRuleStore:
    """Dict-backed rule store for tests and dry runs."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._lock = threading.Lock()
        self._rules: dict[str, Rule] = {}
        self._order: dict[str, int] = {}
        self.save_calls: list[tuple[str, tuple[str, ...] | None]] = []
        for rule in rules:
            self._put(rule.copy())

    def _put(self, rule: Rule) -> None:
        if rule.created_at is None:
            rule.created_at = utc_now()
        self._order.setdefault(rule.rule_id, len(self._order))
        self._rules[rule.rule_id] = rule

    def load_enabled_rules_by_priority(self) -> list[Rule]:
        with self._lock:
            enabled = [r for r in self._rules.values() if r.enabled]
            enabled.sort(key=lambda r: (r.priority, r.created_at, self._order[r.rule_id]), reverse=True)
            return [r.copy() for r in enabled]

    def get_rule(self, rule_id: str) -> Rule | None:
        with self._lock:
            rule = self._rules.get(rule_id)
            return rule.copy() if rule else None

    def save_rule(self, rule: Rule, fields: Iterable[str] | None = None) -> None:
        names = tuple(fields) if fields is not None else None
        with self._lock:
            self.save_calls.append((rule.rule_id, names))
            stored = self._rules.get(rule.rule_id)
            if names is None or stored is None:
                self._put(rule.copy())
                return
            source = rule.copy()
            for name in names:
                setattr(stored, name, getattr(source, name))


class InMemoryConfigStore:
    def __init__(self, vpd: VPDConfig | None = None, automation: AutomationConfig | None = None) -> None:
        self._lock = threading.Lock()
        self._vpd = (vpd or VPDConfig()).to_dict()
        self._automation = automation or AutomationConfig()
        self.vpd_saves = 0
        self.automation_saves = 0

    def get_vpd_config(self) -> VPDConfig:
        with self._lock:
            return VPDConfig.from_dict(copy.deepcopy(self._vpd))

    def save_vpd_config(self, config: VPDConfig) -> None:
        with self._lock:
            self._vpd = config.to_dict()
            self.vpd_saves += 1

    def get_automation_config(self) -> AutomationConfig:
        with self._lock:
            return self._automation

    def save_automation_config(self, config: AutomationConfig) -> None:
        with self._lock:
            self._automation = config
            self.automation_saves += 1
