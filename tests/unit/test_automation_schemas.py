import pytest
from pydantic import ValidationError

from app.schemas.automation import AutomationConfigPatch, ManualActionRequest, VPDConfigPatch, WebhookUpdateRequest


def test_partial_keeps_only_supplied_keys():
    patch = AutomationConfigPatch.model_validate(
        {"dry_threshold": 25, "plant_specific": {"enabled": True}, "vpd_zones": {"top": {"min": 0.9, "max": 1.3}}}
    )

    assert patch.to_partial() == {
        "dry_threshold": 25.0,
        "plant_specific": {"enabled": True},
        "vpd_zones": {"top": {"min": 0.9, "max": 1.3}},
    }


def test_explicit_null_is_kept_in_partial():
    assert AutomationConfigPatch.model_validate({"timezone": None}).to_partial() == {"timezone": None}


@pytest.mark.parametrize(
    "payload",
    [
        {"vpd_min": 1.5, "vpd_max": 1.0},
        {"light_start_hour": 24},
        {"max_gas_safe": -1},
        {"unknown": True},
        {"plant_specific": {"slots": [{"slot_index": 0, "pump_id": 0}]}},
    ],
)
def test_config_patch_rejects(payload):
    with pytest.raises(ValidationError):
        AutomationConfigPatch.model_validate(payload)


def test_manual_action_command_needs_a_verb():
    assert ManualActionRequest.model_validate({"command": {"action": "set_relay", "relay": "light"}}).command
    assert ManualActionRequest.model_validate({}).command is None

    with pytest.raises(ValidationError):
        ManualActionRequest.model_validate({"command": {"state": True}})


def test_webhook_url_scheme():
    assert WebhookUpdateRequest.model_validate({"url": ""}).url is None
    assert WebhookUpdateRequest.model_validate({"url": "http://10.0.0.2/hook"}).url == "http://10.0.0.2/hook"

    with pytest.raises(ValidationError):
        WebhookUpdateRequest.model_validate({"url": "ftp://example.com"})


def test_vpd_patch_dumps_enum_values():
    patch = VPDConfigPatch.model_validate(
        {"grow_stage": "flowering", "emergency": {"critical_high": {"action": "alert_only"}}}
    )

    assert patch.to_partial() == {"grow_stage": "flowering", "emergency": {"critical_high": {"action": "alert_only"}}}


@pytest.mark.parametrize(
    "payload",
    [
        {"custom_target": {"min": 1.4, "max": 1.0}},
        {"fan_limits": {"min": -1}},
        {"update_interval_seconds": 0},
        {"last_update": {}},
    ],
)
def test_vpd_patch_rejects(payload):
    with pytest.raises(ValidationError):
        VPDConfigPatch.model_validate(payload)
