"""
Automation API Blueprint
========================

Control surface of the automation engine.

Endpoints:
- POST /api/automation/rules/process - Run one rule pass now
- POST /api/automation/rules/<rule_id>/simulate - Dry-run one rule
- POST /api/automation/rules/<rule_id>/trigger - Run one rule now
- POST /api/automation/engine/toggle - Start or stop the rule scheduler
- POST /api/automation/engine/start - Start the rule scheduler
- POST /api/automation/engine/stop - Stop the rule scheduler
- GET /api/automation/engine/status - Scheduler, orchestrator and loop status
- POST /api/automation/manual-action - Pause automation, optionally sending a command
- GET /api/automation/config - Current automation settings
- PATCH /api/automation/config - Deep-merge partial settings
- GET /api/automation/devices - Last commanded device states
- PUT /api/automation/webhook - Change the alert webhook URL
- GET /api/automation/vpd/current - Current VPD, analysis and set-point suggestions
- POST /api/automation/vpd/calculate - VPD for given temperature and humidity
- GET /api/automation/vpd/config - VPD controller settings and statistics
- PUT|PATCH /api/automation/vpd/config - Deep-merge partial VPD settings
- POST /api/automation/vpd/config/reset - Restore default VPD settings
- POST /api/automation/vpd/statistics/reset - Clear VPD statistics
- POST /api/automation/vpd/enable - Turn closed-loop VPD control on
- POST /api/automation/vpd/disable - Turn closed-loop VPD control off

Author: Sebastian Gomez
Date: 2024
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response

from app.blueprints.api._common import get_container, get_engine, get_orchestrator, get_vpd_loop
from app.domain.sensor_sample import SensorSample
from app.domain.vpd import stage_target, vpd_report
from app.schemas.automation import (
    AutomationConfigPatch,
    ManualActionRequest,
    SimulateRuleRequest,
    VPDCalculateRequest,
    VPDConfigPatch,
    WebhookUpdateRequest,
)
from app.utils.http import error_response, parse_body, safe_route, success_response

logger = logging.getLogger(__name__)

automation_api = Blueprint("automation_api", __name__)


# ============================================================================
# Rules
# ============================================================================


@automation_api.post("/rules/process")
@safe_route("Failed to process automation rules")
def process_rules() -> Response:
    outcomes = get_engine().process_rules()
    return success_response({"outcomes": {rule_id: outcome.value for rule_id, outcome in outcomes.items()}})


@automation_api.post("/rules/<rule_id>/simulate")
@safe_route("Failed to simulate rule")
def simulate_rule(rule_id: str) -> Response:
    body = parse_body(SimulateRuleRequest)
    sample = SensorSample.from_dict(body.sensor_data) if body.sensor_data is not None else None
    return success_response(get_engine().simulate_rule(rule_id, sample))


@automation_api.post("/rules/<rule_id>/trigger")
@safe_route("Failed to trigger rule")
def trigger_rule(rule_id: str) -> Response:
    return success_response(get_engine().trigger_rule(rule_id))


# ============================================================================
# Engine lifecycle
# ============================================================================


@automation_api.post("/engine/toggle")
@safe_route("Failed to toggle automation engine")
def toggle_engine() -> Response:
    running = get_engine().toggle()
    return success_response({"running": running}, message=f"Automation {'started' if running else 'stopped'}")


@automation_api.post("/engine/start")
@safe_route("Failed to start automation engine")
def start_engine() -> Response:
    engine = get_engine()
    started = engine.start()
    return success_response({"running": engine.is_running, "changed": started})


@automation_api.post("/engine/stop")
@safe_route("Failed to stop automation engine")
def stop_engine() -> Response:
    engine = get_engine()
    stopped = engine.stop()
    return success_response({"running": engine.is_running, "changed": stopped})


@automation_api.get("/engine/status")
@safe_route("Failed to get automation status")
def engine_status() -> Response:
    return success_response(get_orchestrator().get_status())


# ============================================================================
# Manual control
# ============================================================================


@automation_api.post("/manual-action")
@safe_route("Failed to register manual action")
def manual_action() -> Response:
    body = parse_body(ManualActionRequest)
    orchestrator = get_orchestrator()
    if body.command is not None:
        until = orchestrator.send_manual_command(body.command)
    else:
        until = orchestrator.notify_manual_action()
    return success_response({"manual_override_until": until.isoformat()})


@automation_api.get("/devices")
@safe_route("Failed to get device states")
def device_states() -> Response:
    return success_response(get_orchestrator().get_device_states())


# ============================================================================
# Configuration
# ============================================================================


@automation_api.get("/config")
@safe_route("Failed to get automation config")
def get_config() -> Response:
    return success_response(get_orchestrator().get_automation_config().to_dict())


@automation_api.patch("/config")
@safe_route("Failed to update automation config")
def patch_config() -> Response:
    body = parse_body(AutomationConfigPatch, allow_empty=False)
    partial = body.to_partial()
    if not partial:
        return error_response("No settings supplied", 400)
    updated = get_orchestrator().update_automation_config(partial)
    return success_response(updated.to_dict(), message="Automation config updated")


@automation_api.put("/webhook")
@safe_route("Failed to update alert webhook")
def update_webhook() -> Response:
    body = parse_body(WebhookUpdateRequest)
    sink = get_container().webhook_sink
    sink.set_url(body.url)
    return success_response({"configured": sink.url is not None})


# ============================================================================
# VPD controller
# ============================================================================


@automation_api.get("/vpd/current")
@safe_route("Failed to analyze current VPD")
def current_vpd() -> Response:
    return success_response(get_vpd_loop().analyze(get_engine().latest_sample))


@automation_api.post("/vpd/calculate")
@safe_route("Failed to calculate VPD")
def vpd_calculation() -> Response:
    body = parse_body(VPDCalculateRequest, allow_empty=False)
    band = stage_target(body.grow_stage) if body.grow_stage else get_vpd_loop().config.target_range
    report = vpd_report(body.temperature, body.humidity, band)
    if report is None:
        return error_response("VPD undefined for these values", 400)
    return success_response(report)


@automation_api.get("/vpd/config")
@safe_route("Failed to get VPD config")
def get_vpd_config() -> Response:
    return success_response(get_vpd_loop().get_config())


@automation_api.route("/vpd/config", methods=["PUT", "PATCH"])
@safe_route("Failed to update VPD config")
def patch_vpd_config() -> Response:
    body = parse_body(VPDConfigPatch, allow_empty=False)
    partial = body.to_partial()
    if not partial:
        return error_response("No settings supplied", 400)
    updated = get_vpd_loop().update_config(partial)
    return success_response(updated.to_dict(), message="VPD config updated")


@automation_api.post("/vpd/config/reset")
@safe_route("Failed to reset VPD config")
def reset_vpd_config() -> Response:
    return success_response(get_vpd_loop().reset_config().to_dict(), message="VPD config reset")


@automation_api.post("/vpd/statistics/reset")
@safe_route("Failed to reset VPD statistics")
def reset_vpd_statistics() -> Response:
    config = get_vpd_loop().reset_statistics()
    return success_response(config.to_dict()["statistics"], message="VPD statistics reset")


@automation_api.post("/vpd/enable")
@safe_route("Failed to enable VPD control")
def enable_vpd() -> Response:
    get_vpd_loop().set_enabled(True)
    return success_response({"enabled": True}, message="Automatic VPD control enabled")


@automation_api.post("/vpd/disable")
@safe_route("Failed to disable VPD control")
def disable_vpd() -> Response:
    get_vpd_loop().set_enabled(False)
    return success_response({"enabled": False}, message="Automatic VPD control disabled")
