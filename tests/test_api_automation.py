import pytest

from app import create_app
from app.domain.rules import DeviceAction, Rule
from app.domain.sensor_sample import SensorSample


@pytest.fixture()
def app(tmp_path):
    flask_app = create_app(
        {
            "enable_mqtt": False,
            "database_path": ":memory:",
            "log_dir": str(tmp_path),
            "start_engine": False,
        }
    )
    flask_app.config["TESTING"] = True
    yield flask_app
    flask_app.extensions["growbox_shutdown"]("test")


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def container(app):
    return app.config["CONTAINER"]


def test_process_rules_runs_stored_rules(client, container):
    container.rule_store.save_rule(Rule(rule_id="fan", name="Always fan", actions=[DeviceAction("fan", "ON")]))

    resp = client.post("/api/automation/rules/process")

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["ok"] is True
    assert body["data"]["outcomes"] == {"fan": "executed"}
    assert {"action": "set_relay", "relay": "fan", "state": True} in list(container.actuator_channel.history)


def test_process_rules_with_empty_store(client):
    resp = client.post("/api/automation/rules/process")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["outcomes"] == {}


def test_simulate_rule(client, container):
    container.rule_store.save_rule(Rule(rule_id="fan", name="Always fan", actions=[DeviceAction("fan", "ON")]))

    resp = client.post("/api/automation/rules/fan/simulate", json={"sensor_data": {"temp_top": 30}})

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["conditions_met"] is True
    assert data["sensor_data"]["temp_top"] == 30
    assert list(container.actuator_channel.history) == []


def test_simulate_unknown_rule_is_404(client):
    resp = client.post("/api/automation/rules/ghost/simulate", json={})

    body = resp.get_json()
    assert resp.status_code == 404
    assert body["ok"] is False
    assert "ghost" in body["error"]["message"]


def test_engine_lifecycle(client):
    toggled = client.post("/api/automation/engine/toggle").get_json()
    assert toggled["data"]["running"] is True

    again = client.post("/api/automation/engine/start").get_json()
    assert again["data"] == {"running": True, "changed": False}

    stopped = client.post("/api/automation/engine/stop").get_json()
    assert stopped["data"] == {"running": False, "changed": True}


def test_engine_status(client):
    resp = client.get("/api/automation/engine/status")

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["engine"]["running"] is False
    assert data["manual_override_active"] is False
    assert "safety" in data and "vpd" in data


def test_manual_action_without_command_only_pauses(client, container):
    resp = client.post("/api/automation/manual-action")

    assert resp.status_code == 200
    assert resp.get_json()["data"]["manual_override_until"]
    assert list(container.actuator_channel.history) == []
    assert container.orchestrator.is_manual_override_active()


def test_manual_action_sends_command(client, container):
    resp = client.post("/api/automation/manual-action", json={"command": {"command": "LIGHT", "state": True}})

    assert resp.status_code == 200
    assert list(container.actuator_channel.history) == [{"command": "LIGHT", "state": True}]

    devices = client.get("/api/automation/devices").get_json()["data"]
    assert devices["relays"]["light"] is True
    assert devices["manual_override_until"] == resp.get_json()["data"]["manual_override_until"]


def test_manual_action_rejects_command_without_verb(client):
    resp = client.post("/api/automation/manual-action", json={"command": {"state": True}})

    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_get_config_returns_defaults(client):
    data = client.get("/api/automation/config").get_json()["data"]

    assert data["dry_threshold"] == 30.0
    assert data["manual_pause_minutes"] == 30.0


def test_patch_config_merges_and_persists(client, container):
    resp = client.patch("/api/automation/config", json={"dry_threshold": 25})

    assert resp.status_code == 200
    assert resp.get_json()["data"]["dry_threshold"] == 25
    assert container.config_store.get_automation_config().dry_threshold == 25


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"bogus": 1},
        {"vpd_min": 1.4, "vpd_max": 0.8},
        {"dry_threshold": 140},
        {"pump_max_runtime_minutes": 0},
        {"vpd_min": 2.0},
    ],
)
def test_patch_config_rejects_bad_input(client, container, payload):
    resp = client.patch("/api/automation/config", json=payload)

    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False
    assert container.orchestrator.get_automation_config().vpd_min != 2.0


def test_patch_config_requires_a_body(client):
    resp = client.patch("/api/automation/config", data="not json", content_type="text/plain")

    assert resp.status_code == 400


def test_webhook_update(client, container):
    resp = client.put("/api/automation/webhook", json={"url": "https://hooks.example.com/growbox"})

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"configured": True}
    assert container.webhook_sink.url == "https://hooks.example.com/growbox"

    cleared = client.put("/api/automation/webhook", json={"url": ""})
    assert cleared.get_json()["data"] == {"configured": False}


def test_webhook_rejects_non_http_url(client):
    resp = client.put("/api/automation/webhook", json={"url": "ftp://hooks.example.com"})

    assert resp.status_code == 400


def test_unknown_api_path_answers_json(client):
    resp = client.get("/api/automation/nope")

    body = resp.get_json()
    assert resp.status_code == 404
    assert body["ok"] is False


def test_trigger_rule_runs_it_once(client, container):
    container.rule_store.save_rule(Rule(rule_id="fan", name="Always fan", actions=[DeviceAction("fan", "ON")]))

    resp = client.post("/api/automation/rules/fan/trigger")

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["outcome"] == "executed"
    assert data["execution_count"] == 1
    assert data["last_result"] == "success"
    assert container.rule_store.get_rule("fan").execution_count == 1


def test_trigger_unknown_rule_is_404(client):
    resp = client.post("/api/automation/rules/ghost/trigger")

    assert resp.status_code == 404
    assert resp.get_json()["ok"] is False


# ---------------------------------------------------------------------------
# VPD controller
# ---------------------------------------------------------------------------


def test_vpd_enable_and_disable_persist(client, container):
    assert container.vpd_loop.config.enabled is False

    resp = client.post("/api/automation/vpd/enable")

    assert resp.status_code == 200
    assert resp.get_json()["data"] == {"enabled": True}
    assert container.vpd_loop.config.enabled is True
    assert container.config_store.get_vpd_config().enabled is True

    client.post("/api/automation/vpd/disable")
    assert container.config_store.get_vpd_config().enabled is False


def test_vpd_config_patch_merges_nested_settings(client, container):
    resp = client.patch(
        "/api/automation/vpd/config",
        json={"custom_target": {"enabled": True, "min": 0.9, "max": 1.3}, "aggressiveness": "gentle"},
    )

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["target_range"] == {"min": 0.9, "max": 1.3, "optimal": pytest.approx(1.1)}
    assert data["aggressiveness"] == "gentle"
    assert data["fan_limits"] == {"min": 30, "max": 85}
    stored = container.config_store.get_vpd_config()
    assert stored.custom_target.enabled is True
    assert stored.aggressiveness.value == "gentle"


def test_vpd_config_put_is_accepted(client, container):
    resp = client.put("/api/automation/vpd/config", json={"update_interval_seconds": 10})

    assert resp.status_code == 200
    assert container.vpd_loop.config.update_interval_seconds == 10


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"statistics": {"total_adjustments": 0}},
        {"aggressiveness": "turbo"},
        {"fan_limits": {"min": 90, "max": 50}},
        {"fan_limits": {"max": 120}},
        {"custom_target": {"min": 1.5}},
        {"emergency": {"critical_low": {"threshold": 2.5}}},
    ],
)
def test_vpd_config_patch_rejects_bad_input(client, container, payload):
    resp = client.patch("/api/automation/vpd/config", json=payload)

    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False
    assert container.vpd_loop.config.custom_target.min == 0.8
    assert container.vpd_loop.config.fan_limits.min == 30


def test_vpd_config_reset_keeps_tuning_and_statistics(client, container):
    client.patch(
        "/api/automation/vpd/config",
        json={"enabled": True, "aggressiveness": "aggressive", "fan_limits": {"min": 40}, "hysteresis": {"threshold_kpa": 0.1}},
    )
    container.vpd_loop.config.statistics.total_adjustments = 7

    data = client.post("/api/automation/vpd/config/reset").get_json()["data"]

    assert data["enabled"] is False
    assert data["aggressiveness"] == "normal"
    assert data["fan_limits"] == {"min": 30, "max": 85}
    assert data["hysteresis"]["threshold_kpa"] == 0.1
    assert data["statistics"]["total_adjustments"] == 7
    assert container.config_store.get_vpd_config().aggressiveness.value == "normal"


def test_vpd_statistics_reset(client, container):
    stats = container.vpd_loop.config.statistics
    stats.total_adjustments = 12
    stats.average_vpd = 1.1

    resp = client.post("/api/automation/vpd/statistics/reset")

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["total_adjustments"] == 0
    assert data["average_vpd"] == 0.0
    assert data["last_reset"] is not None
    assert container.config_store.get_vpd_config().statistics.total_adjustments == 0


def test_vpd_current_without_readings_is_404(client):
    resp = client.get("/api/automation/vpd/current")

    assert resp.status_code == 404


def test_vpd_current_analyzes_latest_sample(client, container):
    container.engine.update_sensor_data(SensorSample.from_dict({"temp_top": 25, "humidity_top": 60}))

    data = client.get("/api/automation/vpd/current").get_json()["data"]

    assert data["vpd"] == pytest.approx(1.27, abs=0.01)
    assert data["analysis"]["status"] == "high"
    assert data["target"] == {"min": 0.8, "max": 1.2, "optimal": 1.0}
    assert data["suggestions"]["optimal_humidity"] == pytest.approx(68.4, abs=0.2)
    assert data["auto_control"] == {"enabled": False, "grow_stage": "vegetative"}


def test_vpd_calculate_for_a_stage(client):
    resp = client.post("/api/automation/vpd/calculate", json={"temperature": 24, "humidity": 60, "grow_stage": "flowering"})

    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["vpd"] == pytest.approx(1.19, abs=0.01)
    assert data["target"]["min"] == 1.0
    assert data["analysis"]["in_range"] is True


def test_vpd_calculate_validates_input(client):
    assert client.post("/api/automation/vpd/calculate", json={"temperature": 24}).status_code == 400
    assert client.post("/api/automation/vpd/calculate", json={"temperature": 24, "humidity": 140}).status_code == 400
