"""
Socket.IO Event Handlers
========================

Namespaces:
- / (default) - alerts mirrored for legacy dashboards
- /automation - sensor data, VPD updates, device states, alerts

Usage:
    Import this module after socketio.init_app() to register all handlers.

    from app.socketio import register_handlers
    register_handlers()
"""

import logging

logger = logging.getLogger(__name__)


def register_handlers():
    """
    Register all Socket.IO event handlers.

    Must be called AFTER socketio.init_app().
    """
    # Import handlers to trigger @socketio.on() decorator registration
    from . import automation_handlers  # noqa: F401

    logger.info("✅ Socket.IO handlers registered (automation)")
