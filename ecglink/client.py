"""Public entry point: connect, disconnect and subscribe to ECG sensors."""
from __future__ import annotations

import logging
from typing import List, Optional

from ecglink.adapter import BleakAdapter, PlatformAdapter
from ecglink.config import ConnectorConfig
from ecglink.coordinator import DisconnectCoordinator
from ecglink.decode import parse_battery_level
from ecglink.emitter import DataHandler, DisconnectHandler, NotificationEmitter, Unsubscribe
from ecglink.errors import DisconnectError, NotConnected
from ecglink.metrics import MetricsLogger
from ecglink.models import ConnectionRecord, DeviceRequest
from ecglink.orchestrator import DiscoveryOrchestrator
from ecglink.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class EcgClient:
    """Wire the registry, orchestrator, coordinator and emitter together.

    >>> async with EcgClient() as client:
    ...     device_id = await client.connect(DeviceRequest(name_prefix="Movesense"))
    """

    def __init__(
        self,
        config: Optional[ConnectorConfig] = None,
        *,
        adapter: Optional[PlatformAdapter] = None,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        self.config = config or ConnectorConfig()
        if metrics is None and self.config.metrics_path:
            metrics = MetricsLogger(self.config.metrics_path)
        self.metrics = metrics
        self.adapter: PlatformAdapter = adapter or BleakAdapter(
            adapter=self.config.adapter,
            scan_timeout=self.config.scan_timeout,
            connect_timeout=self.config.connect_timeout,
            restrict_services=self.config.restrict_services,
        )
        self.registry = ConnectionRegistry()
        self.emitter = NotificationEmitter()
        self.coordinator = DisconnectCoordinator(self.adapter, self.registry, self.emitter, metrics=metrics)
        self.orchestrator = DiscoveryOrchestrator(
            self.adapter,
            self.registry,
            self.coordinator,
            self.emitter,
            services=self.config.services(),
            extra_hints=self.config.extra_hints,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    async def connect(
        self,
        request: Optional[DeviceRequest] = None,
        on_data: Optional[DataHandler] = None,
    ) -> str:
        """Run the discovery protocol and return the connected device id.

        Missing optional features do not fail the call; they are listed in
        ``get_record(device_id).warnings``.
        """
        record = await self.orchestrator.run(request, on_data)
        for warning in record.warnings:
            logger.info("%s connected without %s", record.device_id, warning)
        return record.device_id

    async def disconnect(self, device_id: str) -> None:
        await self.coordinator.disconnect_explicit(device_id)

    def is_connected(self, device_id: str) -> bool:
        return self.registry.contains(device_id)

    def get_record(self, device_id: str) -> Optional[ConnectionRecord]:
        return self.registry.get(device_id)

    def connected_devices(self) -> List[str]:
        return self.registry.device_ids()

    async def read_battery(self, device_id: str) -> Optional[int]:
        """Read the battery level, or ``None`` if the sensor has no battery service."""
        record = self.registry.get(device_id)
        if record is None:
            raise NotConnected(device_id)
        if record.battery is None:
            return None
        payload = await self.adapter.read(record.server_handle, record.battery)
        return parse_battery_level(payload)

    async def close(self) -> None:
        for device_id in self.registry.device_ids():
            try:
                await self.disconnect(device_id)
            except DisconnectError as exc:
                logger.warning("Disconnect of %s during shutdown failed: %s", device_id, exc)
        await self.emitter.drain()

    async def __aenter__(self) -> "EcgClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        await self.close()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def on_disconnected(self, handler: DisconnectHandler) -> Unsubscribe:
        return self.emitter.on_disconnected(handler)

    def on_data(self, handler: DataHandler) -> Unsubscribe:
        return self.emitter.on_data(handler)


__all__ = ["EcgClient"]
