"""
Flask extension instances.

The Socket.IO server is created unbound so handler modules can decorate
against it at import time; create_app() binds it to the Flask app.
"""

from __future__ import annotations

import logging

from flask import Flask
from flask_socketio import SocketIO

logger = logging.getLogger(__name__)

# Threading mode: the rule scheduler and sample worker are plain threads, not greenlets
socketio = SocketIO(
    async_mode="threading",
    logger=False,
    engineio_logger=False,
    ping_timeout=60,
    ping_interval=25,
)


def split_csv(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def cors_origins(raw: str | None) -> str | list[str]:
    """``"*"`` when unset or wildcard, otherwise the comma-separated origin list."""
    origins = split_csv(raw)
    if not origins or "*" in origins:
        return "*"
    return origins


def init_extensions(app: Flask, origins: str | None, transports: str | None = "polling") -> None:
    """Bind the Socket.IO server to ``app``.

    Args:
        app: Flask application
        origins: ``GROWBOX_SOCKETIO_CORS`` value, ``*`` or comma-separated
        transports: ``GROWBOX_SOCKETIO_TRANSPORTS`` value, e.g. ``polling,websocket``
    """
    allowed = cors_origins(origins)
    transport_list = split_csv(transports) or ["polling"]

    # Engine.IO logs every poll at INFO
    logging.getLogger("engineio").setLevel(logging.WARNING)

    socketio.init_app(
        app,
        cors_allowed_origins=allowed,
        transports=transport_list,
        logger=logging.getLogger("socketio"),
        engineio_logger=False,
    )
    logger.info("Socket.IO bound (origins=%s, transports=%s)", allowed, ",".join(transport_list))
