"""Integration-style tests for the FastAPI layer using the fake adapter."""
from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from fake_adapter import FULL_GATT, FakeAdapter

import ecglink.api as api_module
from ecglink.client import EcgClient
from ecglink.models.service_descriptor import HEART_RATE_MEASUREMENT, HEART_RATE_SERVICE, MOVEMENT_SERVICE


class ApiSimulationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.adapter = FakeAdapter(gatt={k: v for k, v in FULL_GATT.items() if k != MOVEMENT_SERVICE})
        api_module.configure(EcgClient(adapter=self.adapter))
        # one portal for every request so subscribers share the websocket loop
        self.client = TestClient(api_module.app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)
        api_module.configure(None)

    def test_health_endpoint_returns_ok(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["connected"], 0)
        self.assertIn("time", payload)

    def test_connect_and_list_devices(self) -> None:
        response = self.client.post("/connect", params={"name_prefix": "Movesense"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["device_id"], "ABC123")
        self.assertEqual(payload["features"], ["ecg", "battery"])
        self.assertEqual(len(payload["warnings"]), 1)

        listing = self.client.get("/devices").json()
        self.assertEqual([item["device_id"] for item in listing], ["ABC123"])
        self.assertEqual(self.client.get("/devices/ABC123").json()["state"], "established")

    def test_connect_twice_conflicts(self) -> None:
        self.assertEqual(self.client.post("/connect").status_code, 200)

        response = self.client.post("/connect")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["error"], "AlreadyConnected")

    def test_connect_without_matching_device(self) -> None:
        response = self.client.post("/connect", params={"name_prefix": "Polar"})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["failed_at"], "requesting")

    def test_connect_without_heart_rate_service(self) -> None:
        self.adapter.gatt.pop(HEART_RATE_SERVICE)

        response = self.client.post("/connect")

        self.assertEqual(response.status_code, 502)
        detail = response.json()["detail"]
        self.assertEqual(detail["error"], "RequiredServiceMissing")
        self.assertEqual(detail["failed_at"], "discovering_required")

    def test_invalid_filter_is_rejected(self) -> None:
        response = self.client.post("/connect", params={"service_uuid": "not-a-uuid"})
        self.assertEqual(response.status_code, 400)

    def test_battery_and_disconnect(self) -> None:
        self.client.post("/connect")

        self.assertEqual(self.client.get("/devices/ABC123/battery").json()["battery"], 87)

        response = self.client.post("/devices/ABC123/disconnect")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/devices/ABC123").status_code, 404)
        response = self.client.get("/devices/ABC123/battery")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "ABC123 is not connected")
        # unknown ids disconnect successfully
        self.assertEqual(self.client.post("/devices/ABC123/disconnect").status_code, 200)

    def test_events_websocket_streams_data_and_disconnects(self) -> None:
        self.client.post("/connect")

        with self.client.websocket_connect("/events") as ws:
            self.client.portal.call(self.adapter.push, HEART_RATE_MEASUREMENT, b"\x00\x48")
            data_event = ws.receive_json()
            self.client.post("/devices/ABC123/disconnect")
            disconnect_event = ws.receive_json()

        self.assertEqual(data_event["type"], "data")
        self.assertEqual(data_event["channel"], "ecg")
        self.assertEqual(data_event["payload"], "0048")
        self.assertEqual(data_event["heart_rate"]["bpm"], 72)
        self.assertEqual(disconnect_event, {"type": "disconnected", "device_id": "ABC123"})


if __name__ == "__main__":
    unittest.main()
