"""
Service protocols (structural typing interfaces).

Protocols let the automation core declare the *minimal* surface it depends on
without importing the concrete adapters (MQTT, SQLite, webhook, Socket.IO),
breaking circular imports and making tests trivially mockable.

Usage
-----
In a consumer service::

    from __future__ import annotations
    from typing import TYPE_CHECKING
    if TYPE_CHECKING:
        from app.services.protocols import ActuatorChannel

    class ActuatorDispatcher:
        def __init__(self, channel: "ActuatorChannel", ...): ...

At runtime ``MQTTActuatorChannel`` already satisfies the protocol via
structural subtyping, no explicit inheritance needed.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, runtime_checkable

from app.domain.automation_config import AutomationConfig
from app.domain.rules import Rule
from app.domain.vpd import VPDConfig


@runtime_checkable
class ActuatorChannel(Protocol):
    """Outbound path to the hardware. Fire-and-forget, at-most-once."""

    def send(self, command: dict[str, Any]) -> None:
        """Deliver one JSON-shaped command. Raises on transport failure."""
        ...


@runtime_checkable
class RuleStore(Protocol):
    """Persistence of automation rules."""

    def load_enabled_rules_by_priority(self) -> list[Rule]:
        """Enabled rules, priority descending, ties newest-created first."""
        ...

    def get_rule(self, rule_id: str) -> Rule | None:
        ...

    def save_rule(self, rule: Rule, fields: Iterable[str] | None = None) -> None:
        """Persist ``rule``. With ``fields`` only those attributes are written."""
        ...


@runtime_checkable
class ConfigStore(Protocol):
    """Persistence of the VPD controller and automation configuration."""

    def get_vpd_config(self) -> VPDConfig:
        ...

    def save_vpd_config(self, config: VPDConfig) -> None:
        ...

    def get_automation_config(self) -> AutomationConfig:
        ...

    def save_automation_config(self, config: AutomationConfig) -> None:
        ...


@runtime_checkable
class AlertSink(Protocol):
    """User-facing notification delivery (webhook, push ...)."""

    def send_alert(self, title: str, message: str, severity: str) -> None:
        ...


@runtime_checkable
class LiveBroadcaster(Protocol):
    """Push channel to connected dashboard clients."""

    def broadcast(self, event: str, payload: dict[str, Any]) -> None:
        ...
