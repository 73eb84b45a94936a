"""app.socketio.automation_handlers

Lifecycle handlers for the /automation namespace.

Live traffic (sensor data, VPD ticks, device states, alerts) is pushed by
SocketIOBroadcaster; these handlers only give a newly connected dashboard
a status snapshot so it does not have to wait for the next sample.
"""

import logging

from flask import current_app, request
from flask_socketio import emit

from app.enums.events import WebSocketEvent
from app.extensions import socketio
from app.utils.emitters import SOCKETIO_NAMESPACE_AUTOMATION

logger = logging.getLogger(__name__)


def _emit_status() -> None:
    container = current_app.config.get("CONTAINER")
    if container is None:
        return
    try:
        emit(WebSocketEvent.AUTOMATION_STATUS.value, container.orchestrator.get_status())
    except Exception as e:
        logger.warning("Failed to send automation status to %s: %s", request.sid, e)


@socketio.on("connect", namespace=SOCKETIO_NAMESPACE_AUTOMATION)
def handle_automation_connect(_auth=None):
    logger.info("Client connected to /automation namespace: %s", request.sid)
    _emit_status()


@socketio.on("request_status", namespace=SOCKETIO_NAMESPACE_AUTOMATION)
def handle_request_status(_data=None):
    _emit_status()


@socketio.on("disconnect", namespace=SOCKETIO_NAMESPACE_AUTOMATION)
def handle_automation_disconnect(_reason=None):
    logger.info("Client disconnected from /automation namespace: %s", request.sid)
