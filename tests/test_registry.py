from __future__ import annotations

import unittest
from types import SimpleNamespace

from ecglink.errors import AlreadyConnected, AlreadyConnecting
from ecglink.models import ConnectionRecord, RequiredCharacteristics
from ecglink.registry import ConnectionRegistry


def _record(device_id: str = "ABC123") -> ConnectionRecord:
    return ConnectionRecord(
        device_id=device_id,
        device_handle=SimpleNamespace(address=device_id),
        server_handle=object(),
        required=RequiredCharacteristics(ecg=object()),
    )


class ConnectionRegistryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = ConnectionRegistry()

    def test_insert_get_contains(self) -> None:
        record = _record()
        self.registry.insert(record)

        self.assertIs(self.registry.get("ABC123"), record)
        self.assertTrue(self.registry.contains("ABC123"))
        self.assertIn("ABC123", self.registry)
        self.assertEqual(self.registry.device_ids(), ["ABC123"])
        self.assertIsNone(self.registry.get("other"))

    def test_duplicate_insert_is_rejected(self) -> None:
        first = _record()
        self.registry.insert(first)

        with self.assertRaises(AlreadyConnected):
            self.registry.insert(_record())
        self.assertIs(self.registry.get("ABC123"), first)

    def test_remove_is_idempotent(self) -> None:
        record = _record()
        self.registry.insert(record)

        self.assertIs(self.registry.remove("ABC123"), record)
        self.assertIsNone(self.registry.remove("ABC123"))
        self.assertIsNone(self.registry.remove("never-seen"))
        self.assertEqual(len(self.registry), 0)

    def test_reservation_blocks_second_attempt(self) -> None:
        self.registry.reserve("ABC123")

        with self.assertRaises(AlreadyConnecting):
            self.registry.reserve("ABC123")
        self.assertFalse(self.registry.contains("ABC123"))

    def test_insert_converts_reservation(self) -> None:
        self.registry.reserve("ABC123")
        self.registry.insert(_record())

        self.assertFalse(self.registry.is_reserved("ABC123"))
        with self.assertRaises(AlreadyConnected):
            self.registry.reserve("ABC123")

    def test_release_is_idempotent(self) -> None:
        self.registry.reserve("ABC123")
        self.registry.release("ABC123")
        self.registry.release("ABC123")

        self.registry.reserve("ABC123")
        self.assertTrue(self.registry.is_reserved("ABC123"))


if __name__ == "__main__":
    unittest.main()
