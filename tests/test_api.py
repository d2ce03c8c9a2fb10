"""
Tests for the dissection tools API.

Uses FastAPI's TestClient against the application object; no server
process is started.
"""
import pytest
from fastapi.testclient import TestClient

from rbus_dissector.api.server import app
from rbus_dissector.config import settings
from rbus_dissector.engine.encoder import build_message, build_request, pack_values

SET_VALUES = [1, "Comp1", 0, 1, "Device.X.Enable", 0x500, b"\x01", "TRUE",
              "METHOD_SETPARAMETERVALUES", "", "", 0]


@pytest.fixture
def client():
    return TestClient(app)


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "RBus Dissector"
    assert data["status"] == "operational"
    assert data["tcp_port"] == 10002


class TestDissectEndpoint:
    """POST /api/tools/dissect"""

    def test_structured_message(self, client):
        frame = build_request("Device.X.Enable", SET_VALUES)
        response = client.post("/api/tools/dissect", json={"hex_data": frame.hex()})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "complete"
        assert data["method"] == "METHOD_SETPARAMETERVALUES"
        assert data["payload_format"] == "structured"
        assert data["consumed"] == len(frame)
        assert data["total_bytes"] == len(frame)
        assert data["raw_hex"] == frame.hex().upper()
        assert [field["abbrev"] for field in data["fields"]] == ["rbus.header", "rbus.payload"]

    def test_hex_with_spaces(self, client):
        frame = build_message("test")
        spaced = " ".join(f"{b:02x}" for b in frame)
        response = client.post("/api/tools/dissect", json={"hex_data": spaced})
        assert response.json()["summary"] == "Message: test"

    def test_incomplete_message(self, client):
        frame = build_message("test", pack_values(["value"]))
        response = client.post("/api/tools/dissect", json={"hex_data": frame[:-2].hex()})

        data = response.json()
        assert data["success"] is False
        assert data["status"] == "need_more"
        assert data["needed"] == 2
        assert data["fields"] == []

    def test_partial_capture(self, client):
        frame = build_message("test", pack_values(["value"]))
        response = client.post("/api/tools/dissect", json={"hex_data": frame[:-2].hex(), "partial": True})

        data = response.json()
        assert data["success"] is True
        assert "rbus.truncated" in [a["key"] for a in data["annotations"]]

    def test_heuristic_rejection(self, client):
        response = client.post(
            "/api/tools/dissect",
            json={"hex_data": b"GET / HTTP/1.1\r\nHost: example\r\n".hex(), "heuristic": True},
        )
        data = response.json()
        assert data["status"] == "rejected"
        assert data["error"] == "opening marker 0x4745"

    def test_limit_override(self, client):
        frame = build_message("t", pack_values(list(range(10))))
        response = client.post("/api/tools/dissect", json={"hex_data": frame.hex(), "object_limit": 2})
        keys = [a["key"] for a in response.json()["annotations"]]
        assert "rbus.msgpack_object_limit" in keys

    def test_invalid_hex(self, client):
        response = client.post("/api/tools/dissect", json={"hex_data": "zz"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["error"].startswith("Invalid hex string")

    def test_offset_past_end(self, client):
        response = client.post("/api/tools/dissect", json={"hex_data": "aaaa", "offset": 3})
        assert response.status_code == 400

    def test_rejects_zero_limit(self, client):
        response = client.post("/api/tools/dissect", json={"hex_data": "aaaa", "depth_limit": 0})
        assert response.status_code == 422

    def test_rejects_depth_limit_above_cap(self, client):
        response = client.post("/api/tools/dissect", json={"hex_data": "aaaa", "depth_limit": 1000})
        assert response.status_code == 422

    def test_heuristic_follows_settings_by_default(self, client, monkeypatch):
        data = b"GET / HTTP/1.1\r\nHost: example\r\n".hex()

        monkeypatch.setattr(settings, "heuristic_enabled", True)
        assert client.post("/api/tools/dissect", json={"hex_data": data}).json()["status"] == "rejected"

        monkeypatch.setattr(settings, "heuristic_enabled", False)
        assert client.post("/api/tools/dissect", json={"hex_data": data}).json()["status"] != "rejected"

    def test_explicit_heuristic_overrides_settings(self, client, monkeypatch):
        monkeypatch.setattr(settings, "heuristic_enabled", True)
        data = b"GET / HTTP/1.1\r\nHost: example\r\n".hex()
        response = client.post("/api/tools/dissect", json={"hex_data": data, "heuristic": False})
        assert response.json()["status"] != "rejected"


class TestClassifyEndpoint:
    """POST /api/tools/classify"""

    def test_rbus_prefix(self, client):
        frame = build_message("test")
        response = client.post("/api/tools/classify", json={"hex_data": frame.hex()})
        assert response.json() == {"is_rbus": True, "reason": None, "total_bytes": len(frame)}

    def test_not_rbus(self, client):
        response = client.post("/api/tools/classify", json={"hex_data": "00" * 30})
        data = response.json()
        assert data["is_rbus"] is False
        assert data["reason"] == "opening marker 0x0000"

    def test_invalid_hex(self, client):
        response = client.post("/api/tools/classify", json={"hex_data": "xyz"})
        assert response.status_code == 400


def test_registry_lists_fields(client):
    response = client.get("/api/tools/registry")
    assert response.status_code == 200
    abbrevs = {field["abbrev"] for field in response.json()}
    assert {"rbus.header.topic", "rbus.method", "rbus.event_name"} <= abbrevs
