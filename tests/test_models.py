"""Model helpers: device filters, service table and record views."""
from __future__ import annotations

import unittest
from types import SimpleNamespace

from ecglink.models import (
    DEFAULT_SERVICES,
    ConnectionRecord,
    ConnectionState,
    DeviceRequest,
    FeatureWarning,
    MovementCharacteristics,
    RequiredCharacteristics,
)
from ecglink.models.service_descriptor import HEART_RATE_SERVICE, normalize_uuid


class DeviceRequestTest(unittest.TestCase):
    def test_name_prefix_prefers_advertised_local_name(self) -> None:
        request = DeviceRequest(name_prefix="Movesense")
        device = SimpleNamespace(address="AA", name=None, metadata={})

        self.assertFalse(request.matches(device))
        self.assertTrue(request.matches(device, SimpleNamespace(local_name="Movesense 2040", service_uuids=[])))
        self.assertFalse(request.matches(SimpleNamespace(address="AA", name="Polar H10")))

    def test_service_and_address_filters(self) -> None:
        request = DeviceRequest(service_uuids=[0x180D], address="aa:bb")
        device = SimpleNamespace(address="AA:BB", name="x", metadata={"uuids": ["0000180D-0000-1000-8000-00805F9B34FB"]})

        self.assertEqual(request.service_uuids, (HEART_RATE_SERVICE,))
        self.assertTrue(request.matches(device))
        self.assertFalse(request.matches(SimpleNamespace(address="AA:BB", name="x", metadata={})))
        self.assertFalse(request.matches(SimpleNamespace(address="CC", name="x", metadata=device.metadata)))

    def test_empty_name_prefix_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            DeviceRequest(name_prefix="")

    def test_hints_do_not_duplicate(self) -> None:
        request = DeviceRequest(optional_services=[0x180F]).with_hints([0x180F, 0x1801])

        self.assertEqual(request.optional_services, (normalize_uuid(0x180F), normalize_uuid(0x1801)))


class ServiceTableTest(unittest.TestCase):
    def test_only_heart_rate_is_required(self) -> None:
        self.assertEqual([d.name for d in DEFAULT_SERVICES if d.required], ["heart_rate"])
        self.assertEqual(DEFAULT_SERVICES[2].channels, ("acc", "gyr", "mag"))

    def test_normalize_uuid(self) -> None:
        self.assertEqual(normalize_uuid(0x2A37), "00002a37-0000-1000-8000-00805f9b34fb")
        with self.assertRaises(ValueError):
            normalize_uuid(0x1FFFF)


class ConnectionRecordTest(unittest.TestCase):
    def test_features_and_serialization(self) -> None:
        record = ConnectionRecord(
            device_id="ABC123",
            device_handle=None,
            server_handle=None,
            required=RequiredCharacteristics(ecg="ecg", battery="battery"),
            movement=MovementCharacteristics("a", "g", "m"),
            warnings=(FeatureWarning("battery", "notifications unavailable"),),
            name="Movesense",
        )

        payload = record.to_dict()
        self.assertEqual(payload["features"], ["ecg", "battery", "movement"])
        self.assertEqual(payload["state"], ConnectionState.ESTABLISHED.value)
        self.assertEqual(payload["warnings"], ["battery: notifications unavailable"])
        self.assertEqual(record.movement.channels(), {"acc": "a", "gyr": "g", "mag": "m"})


if __name__ == "__main__":
    unittest.main()
