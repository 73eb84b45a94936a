"""
WebSocket Emitters
=====================================

Purpose:
    Push automation events (alerts, VPD updates, device state) to connected
    dashboard clients through the Flask-SocketIO server.

Usage:
    Instantiate SocketIOBroadcaster with the SocketIO instance and pass it to
    the services as their ``broadcaster``. Each call to broadcast() emits to
    every client in the automation namespace.

Author:
    Sebastian Gomez

Created:
    April 2025
"""

import logging
from typing import Any

from flask_socketio import SocketIO

from app.enums.events import WebSocketEvent

logger = logging.getLogger("emitters")

# Socket.IO Namespace Constants
SOCKETIO_NAMESPACE_ROOT = "/"
SOCKETIO_NAMESPACE_AUTOMATION = "/automation"

# Events mirrored on the root namespace for clients that never join /automation
ROOT_EVENTS = frozenset({WebSocketEvent.ALERT.value})


class SocketIOBroadcaster:
    """
    Live push channel to dashboard clients.

    Attributes:
        sio: The Socket.IO SocketIO instance for emitting events.
        namespace: Namespace every automation event is emitted under.
    """

    def __init__(self, sio: SocketIO, namespace: str = SOCKETIO_NAMESPACE_AUTOMATION):
        self.sio = sio
        self.namespace = namespace
        self.emitted_count = 0
        self.failed_count = 0

    def emit(self, event: str, payload: dict, room: str | None = None, namespace: str | None = None) -> bool:
        """
        Emit a Socket.IO event.

        Args:
            event (str): Event name (e.g., "vpd_update").
            payload (dict): JSON serializable data to send.
            room (Optional[str]): Socket.IO room identifier. Broadcasts if None.
            namespace (Optional[str]): Overrides the broadcaster namespace.

        Returns:
            True when the emit reached the Socket.IO server.
        """
        target = namespace or self.namespace
        try:
            logger.debug("Emitting event='%s' to namespace='%s' room='%s'", event, target, room or "broadcast")
            self.sio.emit(event, payload, to=room, namespace=target)
            self.emitted_count += 1
            return True
        except Exception as e:
            self.failed_count += 1
            logger.exception("[Emitter] Failed to emit event '%s' to namespace '%s': %s", event, target, e)
            return False

    def broadcast(self, event: str, payload: dict[str, Any]) -> None:
        """Send ``payload`` to every connected client."""
        self.emit(event, payload)
        if event in ROOT_EVENTS and self.namespace != SOCKETIO_NAMESPACE_ROOT:
            self.emit(event, payload, namespace=SOCKETIO_NAMESPACE_ROOT)

    def stats(self) -> dict[str, Any]:
        return {"namespace": self.namespace, "emitted": self.emitted_count, "failed": self.failed_count}
