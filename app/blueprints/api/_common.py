"""
Blueprint Common Utilities
==========================

Shared helper functions for all API blueprints.

Usage:
    from app.blueprints.api._common import get_container, get_orchestrator, get_engine, get_vpd_loop
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from flask import current_app

if TYPE_CHECKING:
    from app.control_loops.vpd_control_loop import VPDControlLoop
    from app.services.application.automation_engine import AutomationEngine
    from app.services.application.automation_orchestrator import AutomationOrchestrator
    from app.services.container import ServiceContainer

logger = logging.getLogger("api._common")


# ============================================================================
# CONTAINER ACCESS
# ============================================================================


def get_container() -> "ServiceContainer":
    """
    Get the service container from Flask app config.

    Raises:
        RuntimeError: If container is not configured
    """
    container = current_app.config.get("CONTAINER")
    if not container:
        raise RuntimeError("ServiceContainer not found in app config")
    return container


def get_orchestrator() -> "AutomationOrchestrator":
    return get_container().orchestrator


def get_engine() -> "AutomationEngine":
    return get_container().engine


def get_vpd_loop() -> "VPDControlLoop":
    return get_container().vpd_loop
