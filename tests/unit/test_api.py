import pytest
from fastapi.testclient import TestClient

from zone_engine.__version__ import __version__
from zone_engine.node.config.engine_config import EngineConfig
from zone_engine.node.core.controller.controller_core import ControllerCore
from zone_engine.node.core.document_store import MemoryStore
from zone_engine.server.main import create_app


# ---------------------- Fixtures ----------------------

@pytest.fixture
def controller(clock, relay):
    return ControllerCore(EngineConfig(), state_store=MemoryStore(), log_store=MemoryStore(), relay_driver=relay)


@pytest.fixture
def client(controller):
    app = create_app(controller, start_background_tasks=False)
    with TestClient(app) as test_client:
        yield test_client


# ---------------------- Health & status ----------------------

def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == __version__
    assert body["relayMode"] == "mock"
    assert body["schedulerRunning"] is False
    assert isinstance(body["recentMessages"], list)


def test_idle_status(client):
    body = client.get("/api/status").json()

    assert body["activeZoneId"] is None
    assert body["timeRemaining"] == 0
    assert body["rainDelay"] == {"isActive": False, "expiresAt": None, "hoursRemaining": 0}
    assert body["lastRun"] is None
    assert body["recentRuns"] == []


def test_list_zones(client):
    zones = client.get("/api/zones").json()

    assert [zone["id"] for zone in zones] == [1, 2, 3, 4]
    assert zones[0]["isActive"] is False
    assert zones[0]["state"] == "idle"


# ---------------------- Zone control ----------------------

def test_start_and_stop_zone(client, clock):
    response = client.post("/api/zones/1/start", json={"duration": 30})
    assert response.status_code == 200
    assert response.json()["success"] is True

    clock.advance(10)
    status = client.get("/api/status").json()
    assert status["activeZoneId"] == 1
    assert status["activeZoneName"] == "Zone 1"
    assert status["timeRemaining"] == 20
    assert status["elapsedSec"] == 10

    response = client.post("/api/zones/1/stop")
    assert response.status_code == 200

    status = client.get("/api/status").json()
    assert status["activeZoneId"] is None
    assert status["lastRun"]["zoneId"] == 1
    assert status["lastRun"]["durationSec"] == 10
    assert status["recentRuns"][0]["source"] == "manual"


def test_start_zone_without_body_uses_default_duration(client):
    response = client.post("/api/zones/2/start")

    assert response.status_code == 200
    assert client.get("/api/status").json()["timeRemaining"] == 600


def test_start_unknown_zone(client):
    response = client.post("/api/zones/9/start", json={"duration": 30})

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Zone 9 not found"}


def test_stop_unknown_zone(client):
    response = client.post("/api/zones/9/stop")

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Zone 9 not found"}


def test_invalid_duration(client):
    response = client.post("/api/zones/1/start", json={"duration": 0})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_hardware_failure(client, relay):
    relay.fail_activate.add(1)

    response = client.post("/api/zones/1/start", json={"duration": 30})

    assert response.status_code == 502
    assert response.json()["success"] is False


# ---------------------- Rain delay ----------------------

def test_rain_delay_blocks_starts(client):
    response = client.post("/api/rain-delay", json={"hours": 2})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["hoursRemaining"] == 2
    assert body["expiresAt"] == "2025-01-06T08:00:00"

    response = client.post("/api/zones/1/start", json={"duration": 30})
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Rain delay active"}

    assert client.delete("/api/rain-delay").status_code == 200
    assert client.post("/api/zones/1/start", json={"duration": 30}).status_code == 200


def test_rain_delay_is_checked_before_zone_lookup(client):
    client.post("/api/rain-delay", json={"hours": 2})

    response = client.post("/api/zones/99/start", json={"duration": 30})

    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Rain delay active"}


def test_rain_delay_rejects_invalid_hours(client):
    response = client.post("/api/rain-delay", json={"hours": 30})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_malformed_request_body(client):
    response = client.post("/api/rain-delay", json={})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert "hours" in response.json()["message"]


# ---------------------- Schedules ----------------------

def test_schedule_lifecycle(client):
    response = client.post("/api/schedules", json={
        "zoneId": 1, "startTime": "6:00", "daysOfWeek": [3, 1], "durationSec": 600,
    })
    assert response.status_code == 201
    created = response.json()
    assert created["id"].startswith("schedule_")
    assert created["startTime"] == "06:00"
    assert created["daysOfWeek"] == [1, 3]
    assert created["enabled"] is True

    assert len(client.get("/api/schedules").json()) == 1

    response = client.put(f"/api/schedules/{created['id']}", json={"enabled": False})
    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert response.json()["startTime"] == "06:00"

    assert client.delete(f"/api/schedules/{created['id']}").status_code == 200
    assert client.delete(f"/api/schedules/{created['id']}").status_code == 404
    assert client.get("/api/schedules").json() == []


def test_create_schedule_validation(client):
    response = client.post("/api/schedules", json={
        "zoneId": 1, "startTime": "25:00", "daysOfWeek": [1], "durationSec": 600,
    })

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid time format. Use HH:MM"}


def test_update_unknown_schedule(client):
    response = client.put("/api/schedules/schedule_missing", json={"enabled": False})

    assert response.status_code == 404


# ---------------------- Logs ----------------------

def test_logs(client, clock):
    for zone_id in (1, 2, 3):
        client.post(f"/api/zones/{zone_id}/start", json={"duration": 60})
        clock.advance(20)
    client.post("/api/zones/3/stop")

    body = client.get("/api/logs").json()
    assert body["total"] == 3
    assert [entry["zoneId"] for entry in body["logs"]] == [3, 2, 1]
    assert all(entry["durationSec"] == 20 for entry in body["logs"])

    limited = client.get("/api/logs", params={"limit": 1}).json()
    assert len(limited["logs"]) == 1
    assert limited["total"] == 3

    assert client.delete("/api/logs").status_code == 200
    assert client.get("/api/logs").json() == {"logs": [], "total": 0}


def test_negative_log_limit(client):
    assert client.get("/api/logs", params={"limit": -1}).status_code == 400
