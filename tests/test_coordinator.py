"""Disconnect handling: idempotent cleanup and registry/transport lock-step."""
from __future__ import annotations

import unittest

from fake_adapter import FakeAdapter

from ecglink.client import EcgClient
from ecglink.coordinator import DisconnectCoordinator
from ecglink.emitter import NotificationEmitter
from ecglink.errors import DisconnectError
from ecglink.models import ConnectionState
from ecglink.registry import ConnectionRegistry


class DisconnectCoordinatorTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.adapter = FakeAdapter()
        self.client = EcgClient(adapter=self.adapter)
        self.disconnected: list[str] = []
        self.client.on_disconnected(self.disconnected.append)
        self.device_id = await self.client.connect()

    async def test_duplicate_platform_events_notify_once(self) -> None:
        record = self.client.get_record(self.device_id)

        self.adapter.fire_disconnect(self.device_id)
        self.client.coordinator.on_platform_disconnect(self.device_id)
        self.adapter.fire_disconnect(self.device_id)

        self.assertEqual(self.disconnected, [self.device_id])
        self.assertFalse(self.client.is_connected(self.device_id))
        self.assertEqual(record.state, ConnectionState.DISCONNECTED)
        self.assertEqual(self.adapter.detach_count, 1)

    async def test_lock_step_with_explicit_disconnect(self) -> None:
        self.assertTrue(self.client.is_connected(self.device_id))
        server = self.client.get_record(self.device_id).server_handle
        self.assertTrue(server.connected)

        await self.client.disconnect(self.device_id)

        self.assertFalse(self.client.is_connected(self.device_id))
        self.assertFalse(server.connected)
        self.assertEqual(self.disconnected, [self.device_id])

    async def test_explicit_and_platform_disconnect_converge(self) -> None:
        self.adapter.echo_disconnect = True

        await self.client.disconnect(self.device_id)
        self.adapter.fire_disconnect(self.device_id)

        self.assertEqual(self.disconnected, [self.device_id])
        self.assertEqual(self.adapter.attach_count, 1)
        self.assertEqual(self.adapter.detach_count, 1)

    async def test_disconnect_is_safe_for_unknown_and_repeated_ids(self) -> None:
        await self.client.disconnect("not-a-device")
        await self.client.disconnect(self.device_id)
        await self.client.disconnect(self.device_id)

        self.assertEqual(self.disconnected, [self.device_id])
        self.assertEqual(len(self.adapter.disconnect_calls), 1)

    async def test_failed_transport_close_still_cleans_up(self) -> None:
        self.adapter.disconnect_error = OSError("not connected")

        with self.assertRaises(DisconnectError) as ctx:
            await self.client.disconnect(self.device_id)

        self.assertEqual(ctx.exception.device_id, self.device_id)
        self.assertFalse(self.client.is_connected(self.device_id))
        self.assertEqual(self.disconnected, [self.device_id])

    async def test_device_can_reconnect_after_disconnect(self) -> None:
        self.adapter.fire_disconnect(self.device_id)

        self.assertEqual(await self.client.connect(), self.device_id)
        self.assertTrue(self.client.is_connected(self.device_id))

        self.adapter.fire_disconnect(self.device_id)
        self.assertEqual(self.disconnected, [self.device_id, self.device_id])

    async def test_subscriber_failure_does_not_break_cleanup(self) -> None:
        def _broken(_: str) -> None:
            raise RuntimeError("ui gone")

        self.client.emitter._disconnect_handlers.insert(0, _broken)

        with self.assertLogs("ecglink.emitter", level="ERROR"):
            self.adapter.fire_disconnect(self.device_id)

        self.assertEqual(self.disconnected, [self.device_id])
        self.assertFalse(self.client.is_connected(self.device_id))


class CoordinatorUnitTest(unittest.IsolatedAsyncioTestCase):
    async def test_untracked_device_events_are_ignored(self) -> None:
        adapter = FakeAdapter()
        emitter = NotificationEmitter()
        events: list[str] = []
        emitter.on_disconnected(events.append)
        coordinator = DisconnectCoordinator(adapter, ConnectionRegistry(), emitter)

        coordinator.on_platform_disconnect("ghost")

        self.assertEqual(events, [])
        self.assertFalse(coordinator.is_pending("ghost"))

    async def test_disconnect_before_establishment_is_pending(self) -> None:
        adapter = FakeAdapter()
        emitter = NotificationEmitter()
        events: list[str] = []
        emitter.on_disconnected(events.append)
        coordinator = DisconnectCoordinator(adapter, ConnectionRegistry(), emitter)
        device = adapter.devices[0]

        coordinator.attach("ABC123", device)
        adapter.fire_disconnect("ABC123")

        self.assertTrue(coordinator.is_pending("ABC123"))
        self.assertEqual(events, [])

        coordinator.detach("ABC123")
        coordinator.detach("ABC123")
        self.assertFalse(coordinator.is_pending("ABC123"))
        self.assertEqual(adapter.detach_count, 1)

    async def test_attach_twice_is_rejected(self) -> None:
        adapter = FakeAdapter()
        coordinator = DisconnectCoordinator(adapter, ConnectionRegistry(), NotificationEmitter())
        coordinator.attach("ABC123", adapter.devices[0])

        with self.assertRaises(RuntimeError):
            coordinator.attach("ABC123", adapter.devices[0])


if __name__ == "__main__":
    unittest.main()
