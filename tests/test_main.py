import json

import pytest
from fastapi.testclient import TestClient
from simp_firewalld.main import app, get_settings

# --- Test Fixtures ---

@pytest.fixture
def mock_settings():
    """Provides a standard settings object for API tests."""
    return {
        "firewalld": {
            "default_zone": "99_simp",
            "default_order": 11,
        },
        "rules": {
            "allow_all_ssh": {"protocol": "tcp", "trusted_nets": ["all"], "dports": 22},
        },
    }

@pytest.fixture(autouse=True)
def override_settings(mock_settings):
    """
    Overrides the get_settings dependency for every test so no config file
    is needed.
    """
    app.dependency_overrides[get_settings] = lambda: mock_settings
    yield
    app.dependency_overrides = {}

client = TestClient(app)

# --- Test /rules/compile Endpoint ---

def test_compile_tcp_listen():
    """Three IPv4 networks compile to one ipset-backed rule with a custom service."""
    response = client.post("/rules/compile", json={"rules": {
        "allow_tcp_listen": {"protocol": "tcp", "trusted_nets": ["1.2.3.4/24", "3.4.5.6", "5.6.7.8/32"], "dports": 1234},
    }})
    assert response.status_code == 200
    data = response.json()

    assert len(data["rich_rules"]) == 1
    rule = data["rich_rules"][0]
    assert rule["family"] == "ipv4"
    assert rule["zone"] == "99_simp"
    assert rule["order"] == 11
    assert rule["service"] == "simp_allow_tcp_listen"
    assert rule["ipset"] == data["ipsets"][0]["name"]
    assert rule["name"] == f"simp_11_allow_tcp_listen_{rule['ipset']}"
    assert data["ipsets"][0]["entries"] == ["1.2.3.0/24", "3.4.5.6/32", "5.6.7.8/32"]
    assert data["services"][0]["ports"] == [{"port": "1234", "protocol": "tcp"}]

def test_compile_is_repeatable():
    body = {"rules": {"r": {"protocol": "udp", "trusted_nets": ["10.0.0.0/8", "fe80::/64", "2001:db8::/32"], "dports": [53]}}}
    assert client.post("/rules/compile", json=body).json() == client.post("/rules/compile", json=body).json()

def test_compile_reports_hostnames():
    response = client.post("/rules/compile", json={"rules": {
        "hostnames": {"protocol": "all", "trusted_nets": ["10.0.0.0/8", "foo.bar.baz", "i.like.cheese"]},
    }})
    assert response.status_code == 200
    notifications = response.json()["notifications"]
    assert len(notifications) == 1
    assert "foo.bar.baz, i.like.cheese" in notifications[0]["message"]

def test_compile_scope_mismatch_yields_no_rules():
    response = client.post("/rules/compile", json={"rules": {
        "ipv4 nets on ipv6": {"protocol": "all", "trusted_nets": ["10.0.0.0/8"], "apply_to": "ipv6"},
    }})
    assert response.status_code == 200
    assert response.json()["rich_rules"] == []

def test_compile_invalid_address():
    response = client.post("/rules/compile", json={"rules": {
        "broken": {"protocol": "all", "trusted_nets": ["10.0.0.0/33"]},
    }})
    assert response.status_code == 422
    assert "broken" in response.json()["error"]
    assert "10.0.0.0/33" in response.json()["error"]

def test_compile_ports_on_portless_protocol():
    response = client.post("/rules/compile", json={"rules": {
        "allow_esp": {"protocol": "esp", "trusted_nets": ["10.0.0.0/8"], "dports": [500]},
    }})
    assert response.status_code == 422
    assert "allow_esp" in response.json()["error"]

def test_compile_malformed_body():
    response = client.post("/rules/compile", json={"rule": {}})
    assert response.status_code == 400
    assert "error" in response.json()

def test_compile_uses_configured_policy(mock_settings):
    mock_settings["firewalld"] = {"default_zone": "edge", "default_order": 40}
    response = client.post("/rules/compile", json={"rules": {"r": {"protocol": "all", "trusted_nets": ["10.0.0.0/8"]}}})
    rule = response.json()["rich_rules"][0]
    assert rule["zone"] == "edge"
    assert rule["order"] == 40

# --- Test /rules/plan Endpoint ---

def test_plan():
    response = client.post("/rules/plan", json={"rules": {
        "allow_esp": {"protocol": "esp", "trusted_nets": ["10.0.0.0/8"], "order": 15},
    }})
    assert response.status_code == 200
    commands = response.json()["commands"]
    assert commands[0] == ["--permanent", "--new-zone=99_simp"]
    assert [
        "--permanent",
        "--zone=99_simp",
        '--add-rich-rule=rule priority="15" family="ipv4" source address="10.0.0.0/8" protocol value="esp" accept',
    ] in commands
    assert commands[-1] == ["--reload"]

# --- Test /rules, /zone and /health Endpoints ---

def test_configured_rules():
    response = client.get("/rules")
    assert response.status_code == 200
    data = response.json()
    assert [rule["source"] for rule in data["rich_rules"]] == ["0.0.0.0/0", "::/0"]
    assert [service["name"] for service in data["services"]] == ["simp_allow_all_ssh"]

def test_zone():
    response = client.get("/zone")
    assert response.status_code == 200
    data = response.json()
    assert data["zone"]["name"] == "99_simp"
    assert data["zone"]["target"] == "DROP"
    assert data["daemon"]["lockdown"] == "yes"
    assert data["daemon"]["log_denied"] == "unicast"

def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

# --- Test OpenAPI document generation ---

def test_write_openapi_document(tmp_path):
    from simp_firewalld import openapi_utils

    output = tmp_path / "docs" / "openapi.json"
    path = openapi_utils.write_openapi_document(app, output)

    assert path == output.resolve()
    document = json.loads(output.read_text())
    assert "/rules/compile" in document["paths"]
    assert "/rules/plan" in document["paths"]
