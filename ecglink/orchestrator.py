"""Ordered GATT discovery that turns a device request into a registered record."""
from __future__ import annotations

import contextlib
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, ContextManager, Dict, List, Optional, Sequence

from ecglink.adapter import PlatformAdapter
from ecglink.coordinator import DisconnectCoordinator
from ecglink.emitter import DataHandler, NotificationEmitter
from ecglink.errors import (
	CleanupFailed,
	ConnectError,
	DisconnectedDuringDiscovery,
	GattConnectError,
	NoDeviceSelected,
	RequiredServiceMissing,
	SelectionError,
	TransportError,
)
from ecglink.metrics import MetricsLogger
from ecglink.models import (
	DEFAULT_SERVICES,
	ConnectionRecord,
	ConnectionState,
	DeviceRequest,
	FeatureWarning,
	MovementCharacteristics,
	RequiredCharacteristics,
	ServiceDescriptor,
)
from ecglink.models.service_descriptor import GENERIC_ATTRIBUTE_SERVICE
from ecglink.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

_MOVEMENT_CHANNELS = ("acc", "gyr", "mag")


@dataclass(slots=True)
class DiscoveryAttempt:
	"""Transient state of one ``connect`` call.

	Until the record is inserted the attempt, not the registry, owns the
	device and server handles.
	"""

	state: ConnectionState = ConnectionState.IDLE
	history: List[ConnectionState] = field(default_factory=lambda: [ConnectionState.IDLE])
	device_id: Optional[str] = None
	reserved: Optional[str] = None
	attached: bool = False
	unsubscribe_data: Optional[Callable[[], None]] = None

	def advance(self, state: ConnectionState) -> None:
		logger.debug("%s: %s -> %s", self.device_id or "<unresolved>", self.state.value, state.value)
		self.state = state
		self.history.append(state)


class DiscoveryOrchestrator:
	"""Drive ``REQUESTING -> ... -> ESTABLISHED`` for one attempt at a time per device.

	Required services are discovered before optional ones and the registry
	insert is the last step, so a returned record is always complete and
	registered. Optional service groups that fail are reported as
	:class:`FeatureWarning` on the record. Notifications are subscribed before
	the insert but reach the emitter only once the record is registered.
	No step has a timeout of its own; the adapter's scan and connect timeouts
	are the only bounds.
	"""

	def __init__(
		self,
		adapter: PlatformAdapter,
		registry: ConnectionRegistry,
		coordinator: DisconnectCoordinator,
		emitter: NotificationEmitter,
		*,
		services: Sequence[ServiceDescriptor] = DEFAULT_SERVICES,
		extra_hints: Sequence[int | str] = (GENERIC_ATTRIBUTE_SERVICE,),
		metrics: Optional[MetricsLogger] = None,
	) -> None:
		if not any(descriptor.required for descriptor in services):
			raise ValueError("at least one required service descriptor is needed")
		self._adapter = adapter
		self._registry = registry
		self._coordinator = coordinator
		self._emitter = emitter
		self._services = tuple(services)
		self._hints = [*(descriptor.uuid for descriptor in self._services), *extra_hints]
		self._metrics = metrics

	async def run(
		self,
		request: Optional[DeviceRequest] = None,
		on_data: Optional[DataHandler] = None,
	) -> ConnectionRecord:
		request = (request or DeviceRequest()).with_hints(self._hints)
		attempt = DiscoveryAttempt()
		try:
			return await self._run(attempt, request, on_data)
		except BaseException as exc:
			failed_in = attempt.state
			attempt.advance(ConnectionState.FAILED)
			self._abandon(attempt)
			if isinstance(exc, ConnectError):
				if exc.failed_at is None:
					exc.failed_at = failed_in
				logger.warning("Connection attempt failed in %s: %s", failed_in.value, exc)
			raise

	# ------------------------------------------------------------------
	# Steps
	# ------------------------------------------------------------------
	async def _run(
		self,
		attempt: DiscoveryAttempt,
		request: DeviceRequest,
		on_data: Optional[DataHandler],
	) -> ConnectionRecord:
		attempt.advance(ConnectionState.REQUESTING)
		if request.address:
			self._reserve(attempt, request.address)
		with self._timed(attempt, "request_device"):
			device = await self._request_device(request)
		device_id = self._adapter.device_identity(device)
		if attempt.reserved != device_id:
			self._reserve(attempt, device_id)
		attempt.device_id = device_id
		if on_data is not None:
			attempt.unsubscribe_data = self._emitter.on_device_data(device_id, on_data)

		attempt.advance(ConnectionState.AWAITING_SERVER)
		self._coordinator.attach(device_id, device)
		attempt.attached = True
		with self._timed(attempt, "connect_gatt"):
			try:
				server = await self._adapter.connect(device)
			except Exception as exc:
				raise GattConnectError(
					f"Failed to connect to GATT server of {device_id}: {exc}",
					device_id=device_id,
				) from exc

		try:
			return await self._discover(attempt, device, server)
		except ConnectError as exc:
			cleanup_error = await self._close_server(device_id, server)
			if cleanup_error is not None:
				compound = CleanupFailed(exc, cleanup_error)
				compound.failed_at = attempt.state
				raise compound from exc
			raise
		except BaseException:
			await self._close_server(device_id, server)
			raise

	async def _request_device(self, request: DeviceRequest) -> Any:
		try:
			device = await self._adapter.request_device(request)
		except SelectionError:
			raise
		except Exception as exc:
			raise SelectionError(f"Failed to request device: {exc}") from exc
		if device is None:
			raise NoDeviceSelected("No device selected")
		return device

	async def _discover(self, attempt: DiscoveryAttempt, device: Any, server: Any) -> ConnectionRecord:
		device_id = attempt.device_id or ""
		channels: Dict[str, Any] = {}
		warnings: List[FeatureWarning] = []

		attempt.advance(ConnectionState.DISCOVERING_REQUIRED)
		for descriptor in self._services:
			if not descriptor.required:
				continue
			with self._timed(attempt, descriptor.name):
				try:
					channels.update(await self._discover_group(server, descriptor))
				except Exception as exc:
					raise RequiredServiceMissing(
						f"Required {descriptor.name} service unavailable on {device_id}: {exc}",
						device_id=device_id,
						uuid=getattr(exc, "uuid", descriptor.uuid),
					) from exc

		attempt.advance(ConnectionState.DISCOVERING_OPTIONAL)
		for descriptor in self._services:
			if descriptor.required:
				continue
			try:
				with self._timed(attempt, descriptor.name):
					channels.update(await self._discover_group(server, descriptor))
			except Exception as exc:
				warning = FeatureWarning(descriptor.name, str(exc), uuid=getattr(exc, "uuid", descriptor.uuid))
				logger.warning("Optional %s service unavailable on %s: %s", descriptor.name, device_id, exc)
				warnings.append(warning)

		await self._start_streams(attempt, server, channels, warnings)

		if self._coordinator.is_pending(device_id):
			raise DisconnectedDuringDiscovery(
				f"{device_id} disconnected before discovery finished",
				device_id=device_id,
			)

		movement = None
		if all(name in channels for name in _MOVEMENT_CHANNELS):
			movement = MovementCharacteristics(*(channels[name] for name in _MOVEMENT_CHANNELS))
		record = ConnectionRecord(
			device_id=device_id,
			device_handle=device,
			server_handle=server,
			required=RequiredCharacteristics(ecg=channels["ecg"], battery=channels.get("battery")),
			movement=movement,
			warnings=tuple(warnings),
			name=self._adapter.device_name(device),
		)
		self._registry.insert(record)
		self._coordinator.mark_established(device_id)
		attempt.advance(ConnectionState.ESTABLISHED)
		logger.info("[+] Device connected: %s (%s)", record.name or "Unknown", device_id)
		return record

	async def _discover_group(self, server: Any, descriptor: ServiceDescriptor) -> Dict[str, Any]:
		"""Resolve every characteristic of ``descriptor`` or raise on the first gap."""
		service = await self._adapter.discover_service(server, descriptor.uuid)
		group: Dict[str, Any] = {}
		for channel, uuid in descriptor.characteristics:
			group[channel] = await self._adapter.discover_characteristic(service, uuid)
		return group

	async def _start_streams(
		self,
		attempt: DiscoveryAttempt,
		server: Any,
		channels: Dict[str, Any],
		warnings: List[FeatureWarning],
	) -> None:
		device_id = attempt.device_id or ""
		for channel, characteristic in channels.items():
			sink = functools.partial(self._deliver, device_id, channel, server)
			try:
				await self._adapter.start_notify(server, characteristic, sink)
			except Exception as exc:
				if channel == "ecg":
					raise TransportError(
						f"Failed to subscribe to ECG notifications of {device_id}: {exc}",
						device_id=device_id,
					) from exc
				logger.warning("Notifications for %s unavailable on %s: %s", channel, device_id, exc)
				warnings.append(FeatureWarning(channel, f"notifications unavailable: {exc}"))

	def _deliver(self, device_id: str, channel: str, server: Any, payload: bytes) -> None:
		# Only the registered record's own server may publish data.
		record = self._registry.get(device_id)
		if record is None or record.server_handle is not server:
			logger.debug("Dropping %s notification from %s: not established", channel, device_id)
			return
		self._emitter.emit_data(device_id, channel, payload)

	# ------------------------------------------------------------------
	# Bookkeeping
	# ------------------------------------------------------------------
	def _reserve(self, attempt: DiscoveryAttempt, device_id: str) -> None:
		self._registry.reserve(device_id)
		if attempt.reserved is not None:
			self._registry.release(attempt.reserved)
		attempt.reserved = device_id

	def _abandon(self, attempt: DiscoveryAttempt) -> None:
		if attempt.unsubscribe_data is not None:
			attempt.unsubscribe_data()
		if attempt.attached and attempt.device_id is not None:
			self._coordinator.detach(attempt.device_id)
		if attempt.reserved is not None:
			self._registry.release(attempt.reserved)

	async def _close_server(self, device_id: str, server: Any) -> Optional[BaseException]:
		try:
			await self._adapter.disconnect(server)
		except Exception as exc:
			logger.error("Closing GATT server of %s after failure also failed: %s", device_id, exc)
			return exc
		return None

	def _timed(self, attempt: DiscoveryAttempt, step: str) -> ContextManager[None]:
		if not self._metrics:
			return contextlib.nullcontext()
		return self._metrics.timer(
			"discovery_step",
			extra={"device_id": attempt.device_id, "step": step, "state": attempt.state.value},
		)


__all__ = ["DiscoveryOrchestrator", "DiscoveryAttempt"]
