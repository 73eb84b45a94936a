"""
Time-bounded wrappers around the rule and config stores.

Every persistence call made from a tick goes through one of these so a slow
or locked database can never stall the rule scheduler or the orchestrator.
Errors and timeouts surface as :class:`PersistenceFailure`; callers log them
and keep their in-memory state.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

from app.domain.exceptions import PersistenceFailure
from app.domain.vpd import VPDConfig
from app.utils.concurrency import call_with_timeout

if TYPE_CHECKING:
    from app.domain.automation_config import AutomationConfig
    from app.domain.rules import Rule
    from app.services.protocols import ConfigStore, RuleStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _TimedStore:
    def __init__(self, timeout_seconds: float, name: str, executor: ThreadPoolExecutor | None = None):
        self.timeout_seconds = timeout_seconds
        self.name = name
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"{name}-io")

    def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return call_with_timeout(self._executor, self.timeout_seconds, fn, *args, **kwargs)
        except PersistenceFailure:
            raise
        except TimeoutError as exc:
            raise PersistenceFailure(
                f"{self.name}.{operation} timed out after {self.timeout_seconds}s",
                detail={"operation": operation},
            ) from exc
        except Exception as exc:
            raise PersistenceFailure(f"{self.name}.{operation} failed: {exc}", detail={"operation": operation}) from exc

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)


class TimedRuleStore(_TimedStore):
    """:class:`RuleStore` with a per-call time budget."""

    def __init__(self, store: "RuleStore", timeout_seconds: float = 5.0, executor: ThreadPoolExecutor | None = None):
        super().__init__(timeout_seconds, "rule_store", executor)
        self.store = store

    def load_enabled_rules_by_priority(self) -> list["Rule"]:
        return self._call("load_enabled_rules_by_priority", self.store.load_enabled_rules_by_priority)

    def get_rule(self, rule_id: str) -> "Rule | None":
        return self._call("get_rule", self.store.get_rule, rule_id)

    def save_rule(self, rule: "Rule", fields: Iterable[str] | None = None) -> None:
        # Snapshot so a later in-memory mutation cannot race the write
        snapshot = rule.copy()
        self._call("save_rule", self.store.save_rule, snapshot, list(fields) if fields is not None else None)


class TimedConfigStore(_TimedStore):
    """:class:`ConfigStore` with a per-call time budget."""

    def __init__(self, store: "ConfigStore", timeout_seconds: float = 5.0, executor: ThreadPoolExecutor | None = None):
        super().__init__(timeout_seconds, "config_store", executor)
        self.store = store

    def get_vpd_config(self) -> "VPDConfig":
        return self._call("get_vpd_config", self.store.get_vpd_config)

    def save_vpd_config(self, config: "VPDConfig") -> None:
        snapshot = VPDConfig.from_dict(config.to_dict())
        self._call("save_vpd_config", self.store.save_vpd_config, snapshot)

    def get_automation_config(self) -> "AutomationConfig":
        return self._call("get_automation_config", self.store.get_automation_config)

    def save_automation_config(self, config: "AutomationConfig") -> None:
        self._call("save_automation_config", self.store.save_automation_config, config)
