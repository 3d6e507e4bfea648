"""Tests de la API HTTP y del WebSocket del dashboard (MQTT deshabilitado)."""

import orjson
import pytest
from fastapi.testclient import TestClient

from flood_ingest.main import create_app
from flood_ingest.mqtt.receiver import get_receiver

from .conftest import PREFIX


@pytest.fixture
def client(settings, engine):
    with TestClient(create_app(settings, engine=engine)) as test_client:
        yield test_client
    assert get_receiver() is None


@pytest.fixture
def receiver(client):
    return client.app.state.receiver


def _reading(receiver, code, **fields):
    return receiver.handle_message(f"{PREFIX}/{code}/sensor", orjson.dumps(fields))


# =============================================================================
# HEALTH
# =============================================================================

class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready_without_mqtt(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["db_connected"] is True

    def test_stats(self, client):
        stats = client.get("/stats").json()

        assert stats["running"] is True
        assert stats["connected"] is False
        assert stats["websocket"]["current"] == 0

    def test_metrics(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "flood_ingest_mqtt_connected" in response.text

    def test_receiver_stopped_after_shutdown(self, settings, engine):
        app = create_app(settings, engine=engine)
        with TestClient(app):
            assert get_receiver() is not None
        assert get_receiver() is None
        assert app.state.receiver is None


# =============================================================================
# CONSULTAS
# =============================================================================

class TestStatusQueries:
    def test_flood_summary_and_warnings(self, client, receiver, make_device):
        make_device("API-1")
        make_device("API-2")
        assert _reading(receiver, "API-1", waterLevel=160).ok
        assert _reading(receiver, "API-2", waterLevel=20).ok

        summary = client.get("/flood/summary").json()
        assert summary["siaga"] == 1
        assert summary["aman"] == 1
        assert summary["flooding"] == 1

        warnings = client.get("/flood/warnings").json()
        assert len(warnings) == 1
        assert warnings[0]["name"] == "Lokasi API-1"
        assert warnings[0]["statusColor"] == "orange"
        assert warnings[0]["currentWaterLevel"] == 160

    def test_flood_history(self, client, receiver, make_device):
        make_device("API-3")
        _reading(receiver, "API-3", waterLevel=90)
        _reading(receiver, "API-3", waterLevel=220)

        page = client.get("/flood/history", params={"status": "BAHAYA"}).json()
        assert page["pagination"]["totalItems"] == 1
        assert page["data"][0]["newStatus"] == "BAHAYA"

        clamped = client.get("/flood/history", params={"page": 0, "limit": 500, "sortBy": "nope"}).json()
        assert clamped["pagination"]["currentPage"] == 1
        assert clamped["pagination"]["itemsPerPage"] == 100
        assert clamped["pagination"]["totalItems"] == 2

    def test_thresholds(self, client, make_device):
        device = make_device("API-4")

        info = client.get(f"/locations/{device.location_id}/thresholds", params={"waterLevel": 100}).json()
        assert info["currentStatus"] == "WASPADA"
        assert info["nextThresholdName"] == "SIAGA"

    def test_thresholds_unknown_location_is_404(self, client):
        response = client.get("/locations/999/thresholds")

        assert response.status_code == 404
        assert "999" in response.json()["detail"]

    def test_devices_summary(self, client, receiver, make_device):
        make_device("API-5")
        receiver.handle_message(f"{PREFIX}/API-5/heartbeat", b"")

        assert client.get("/devices/summary").json() == {"total": 1, "connected": 1, "disconnected": 0}


class TestLatestReading:
    def test_from_cache(self, client, receiver, make_device):
        make_device("LR-1")
        _reading(receiver, "LR-1", waterLevel=42, rainfall=1.5)

        body = client.get("/devices/LR-1/latest").json()
        assert body["source"] == "cache"
        assert body["waterLevel"] == 42
        assert body["rainfall"] == 1.5

    def test_falls_back_to_store(self, client, receiver, make_device):
        make_device("LR-2")
        receiver.sensor_logs.append("LR-2", rainfall=None, water_level=33.0)

        body = client.get("/devices/LR-2/latest").json()
        assert body["source"] == "store"
        assert body["waterLevel"] == 33.0

    def test_unknown_is_404(self, client):
        assert client.get("/devices/NOPE/latest").status_code == 404


# =============================================================================
# WEBSOCKET
# =============================================================================

class TestDashboardSocket:
    def test_initial_events(self, client, receiver, make_device):
        make_device("WS-1")
        _reading(receiver, "WS-1", waterLevel=210)

        with client.websocket_connect("/ws") as ws:
            messages = [ws.receive_json() for _ in range(4)]

        assert [m["event"] for m in messages] == [
            "device_status_summary",
            "flood_summary",
            "flood_warnings_updated",
            "location_status_history_initial",
        ]
        assert messages[1]["data"]["bahaya"] == 1
        assert messages[2]["data"][0]["statusColor"] == "red"
        assert messages[3]["data"][0]["newStatus"] == "BAHAYA"

    def test_actions(self, client):
        with client.websocket_connect("/ws") as ws:
            for _ in range(4):
                ws.receive_json()

            ws.send_text(orjson.dumps({"action": "ping"}).decode())
            assert ws.receive_json()["event"] == "pong"

            ws.send_text(orjson.dumps({"action": "subscribe"}).decode())
            assert ws.receive_json()["event"] == "error"

            ws.send_text(orjson.dumps({"action": "subscribe", "room": "location-1"}).decode())
            assert ws.receive_json() == {"event": "subscribed", "data": {"room": "location-1"}}
            assert client.app.state.hub.clients_in_room("location-1") == 1

            ws.send_text(orjson.dumps({"action": "unsubscribe", "room": "location-1"}).decode())
            assert ws.receive_json()["event"] == "unsubscribed"

            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"
