from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from app.utils.time import iso_now
from infrastructure.utils.structured_fields import dump_json_field, parse_json_dict

logger = logging.getLogger(__name__)

# Columns a partial rule update may touch
RULE_COLUMNS = (
    "name",
    "description",
    "conditions",
    "actions",
    "else_actions",
    "enabled",
    "priority",
    "cooldown",
    "max_executions",
    "execution_count",
    "last_executed",
    "last_result",
    "depends_on",
    "conflicts_with",
    "rule_group",
    "tags",
    "test_mode",
    "test_results",
    "created_at",
)


class AutomationOperations:
    """Automation rule and system configuration helpers shared across database handlers."""

    # --- Rules ------------------------------------------------------------------
    def upsert_automation_rule(self, rule_id: str, values: Mapping[str, Any]) -> None:
        row = dict(values)
        if not row.get("created_at"):
            row["created_at"] = iso_now()
        columns = [c for c in RULE_COLUMNS if c in row]
        params = [row[c] for c in columns]
        placeholders = ", ".join("?" for _ in columns)
        assignments = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "created_at")
        with self.connection() as db:
            db.execute(
                f"""
                INSERT INTO AutomationRules (rule_id, {", ".join(columns)}, updated_at)
                VALUES (?, {placeholders}, ?)
                ON CONFLICT(rule_id) DO UPDATE SET {assignments}, updated_at = excluded.updated_at
                """,
                (rule_id, *params, iso_now()),
            )

    def update_automation_rule_fields(self, rule_id: str, values: Mapping[str, Any]) -> int:
        """Update only the given columns. Returns the number of rows touched."""
        unknown = set(values) - set(RULE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown AutomationRules column(s): {sorted(unknown)}")
        if not values:
            return 0
        columns = list(values)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        with self.connection() as db:
            cursor = db.execute(
                f"UPDATE AutomationRules SET {assignments}, updated_at = ? WHERE rule_id = ?",
                (*[values[c] for c in columns], iso_now(), rule_id),
            )
            return cursor.rowcount

    def fetch_enabled_automation_rules(self) -> list[dict[str, Any]]:
        with self.connection() as db:
            rows = db.execute(
                """
                SELECT * FROM AutomationRules
                WHERE enabled = 1
                ORDER BY priority DESC, created_at DESC, rowid DESC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    def fetch_automation_rule(self, rule_id: str) -> dict[str, Any] | None:
        with self.connection() as db:
            row = db.execute("SELECT * FROM AutomationRules WHERE rule_id = ?", (rule_id,)).fetchone()
        return dict(row) if row else None

    def delete_automation_rules(self, rule_ids: Iterable[str]) -> int:
        ids = list(rule_ids)
        if not ids:
            return 0
        with self.connection() as db:
            cursor = db.execute(
                f"DELETE FROM AutomationRules WHERE rule_id IN ({', '.join('?' for _ in ids)})",
                ids,
            )
            return cursor.rowcount

    # --- System config ----------------------------------------------------------
    def get_system_config(self, config_key: str) -> dict[str, Any] | None:
        with self.connection() as db:
            row = db.execute(
                "SELECT config_value FROM SystemConfig WHERE config_key = ?",
                (config_key,),
            ).fetchone()
        if not row:
            return None
        return parse_json_dict(row["config_value"], "SystemConfig.config_value")

    def save_system_config(self, config_key: str, value: Mapping[str, Any], updated_by: str = "system") -> None:
        payload = dump_json_field(dict(value))
        with self.connection() as db:
            db.execute(
                """
                INSERT INTO SystemConfig (config_key, config_value, updated_at, updated_by)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(config_key) DO UPDATE SET
                    config_value = excluded.config_value,
                    updated_at = excluded.updated_at,
                    updated_by = excluded.updated_by
                """,
                (config_key, payload, iso_now(), updated_by),
            )
