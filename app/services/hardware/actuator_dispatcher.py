"""
Actuator dispatcher: bounded-time delivery of commands to the actuator channel.

Every component that commands hardware owns a dispatcher. The safety
interlock gets its own instance (own worker pool) so an all-stop never
queues behind a slow rule dispatch.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Iterable

from app.domain.actuator_commands import Command, DeviceStateTracker
from app.domain.exceptions import ActuatorDispatchFailure
from app.utils.concurrency import call_with_timeout

if TYPE_CHECKING:
    from app.services.protocols import ActuatorChannel


logger = logging.getLogger(__name__)


class ActuatorDispatcher:
    """
    Sends commands through an :class:`ActuatorChannel` with a time budget.

    Failures and timeouts surface as :class:`ActuatorDispatchFailure`. There
    are no retries: the next tick re-evaluates and sends again if needed.
    """

    def __init__(
        self,
        channel: "ActuatorChannel",
        *,
        timeout_seconds: float = 5.0,
        name: str = "actuator",
        state_tracker: DeviceStateTracker | None = None,
        max_workers: int = 2,
    ):
        """
        Initialize dispatcher.

        Args:
            channel: Outbound actuator channel
            timeout_seconds: Maximum wait per command
            name: Label used for worker threads and logs
            state_tracker: Optional tracker updated after each delivered command
            max_workers: Size of the private worker pool
        """
        self.channel = channel
        self.timeout_seconds = timeout_seconds
        self.name = name
        self.state_tracker = state_tracker
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"{name}-dispatch")
        self.sent_count = 0
        self.failed_count = 0

    def send(self, command: Command) -> None:
        """Send one command.

        Raises:
            ActuatorDispatchFailure: the channel raised or did not return in time
        """
        try:
            call_with_timeout(self._executor, self.timeout_seconds, self.channel.send, command)
        except TimeoutError as exc:
            self.failed_count += 1
            raise ActuatorDispatchFailure(
                f"[{self.name}] command timed out after {self.timeout_seconds}s",
                detail={"command": command},
            ) from exc
        except Exception as exc:
            self.failed_count += 1
            raise ActuatorDispatchFailure(
                f"[{self.name}] command failed: {exc}",
                detail={"command": command},
            ) from exc

        self.sent_count += 1
        if self.state_tracker is not None:
            self.state_tracker.record(command)
        logger.debug("[%s] sent %s", self.name, command)

    def send_all(self, commands: Iterable[Command]) -> list[ActuatorDispatchFailure]:
        """Send every command even if some fail; return the failures."""
        failures: list[ActuatorDispatchFailure] = []
        for command in commands:
            try:
                self.send(command)
            except ActuatorDispatchFailure as exc:
                logger.error("%s", exc)
                failures.append(exc)
        return failures

    def stats(self) -> dict[str, Any]:
        return {"name": self.name, "sent": self.sent_count, "failed": self.failed_count}

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
