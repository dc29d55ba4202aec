"""Platform Bluetooth adapter interface and its bleak implementation."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, TypeAlias

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic
from bleak.backends.device import BLEDevice
from bleak.backends.service import BleakGATTService
from bleak.exc import BleakError

from ecglink.errors import AdapterUnsupported, CharacteristicNotFound, NoDeviceSelected, ServiceNotFound
from ecglink.models import DeviceRequest

logger = logging.getLogger(__name__)

DeviceHandle: TypeAlias = Any
ServerHandle: TypeAlias = Any
ServiceHandle: TypeAlias = Any
CharacteristicHandle: TypeAlias = Any
DisconnectListener = Callable[[], None]
PayloadCallback = Callable[[bytes], None]


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
	try:
		return asyncio.get_running_loop()
	except RuntimeError:
		return None


class PlatformAdapter(Protocol):
	"""What the connection core needs from the host Bluetooth stack.

	Every coroutine is a suspension point. Disconnect listeners are called
	without arguments whenever the platform reports the device's GATT link as
	gone, possibly more than once per link.
	"""

	async def request_device(self, request: DeviceRequest) -> DeviceHandle: ...

	def device_identity(self, device: DeviceHandle) -> str: ...

	def device_name(self, device: DeviceHandle) -> Optional[str]: ...

	async def connect(self, device: DeviceHandle) -> ServerHandle: ...

	async def disconnect(self, server: ServerHandle) -> None: ...

	async def discover_service(self, server: ServerHandle, uuid: str) -> ServiceHandle: ...

	async def discover_characteristic(self, service: ServiceHandle, uuid: str) -> CharacteristicHandle: ...

	async def start_notify(
		self,
		server: ServerHandle,
		characteristic: CharacteristicHandle,
		callback: PayloadCallback,
	) -> None: ...

	async def read(self, server: ServerHandle, characteristic: CharacteristicHandle) -> bytes: ...

	def add_disconnect_listener(self, device: DeviceHandle, listener: DisconnectListener) -> None: ...

	def remove_disconnect_listener(self, device: DeviceHandle, listener: DisconnectListener) -> None: ...


class BleakAdapter:
	""":class:`PlatformAdapter` backed by :mod:`bleak`.

	Device selection scans until the first advertisement that satisfies the
	request (or ``scan_timeout`` runs out). The request's optional-service
	hints, together with its advertised-service filters, restrict GATT
	discovery on connect.
	"""

	def __init__(
		self,
		*,
		adapter: Optional[str] = None,
		scan_timeout: float = 10.0,
		connect_timeout: float = 10.0,
		restrict_services: bool = True,
	) -> None:
		self.adapter = adapter
		self.scan_timeout = scan_timeout
		self.connect_timeout = connect_timeout
		self.restrict_services = restrict_services
		self._listeners: Dict[str, List[DisconnectListener]] = {}
		self._hints: Dict[str, Sequence[str]] = {}
		self._loop: Optional[asyncio.AbstractEventLoop] = None

	# ------------------------------------------------------------------
	# Selection
	# ------------------------------------------------------------------
	async def request_device(self, request: DeviceRequest) -> BLEDevice:
		kwargs: Dict[str, Any] = {}
		if request.service_uuids:
			kwargs["service_uuids"] = list(request.service_uuids)
		if self.adapter:
			kwargs["adapter"] = self.adapter

		try:
			device = await BleakScanner.find_device_by_filter(
				request.matches,
				timeout=self.scan_timeout,
				**kwargs,
			)
		except BleakError as exc:
			logger.exception("BLE scan failed")
			raise AdapterUnsupported(f"Bluetooth adapter unavailable: {exc}") from exc

		if device is None:
			raise NoDeviceSelected(f"No device matching {request!r} within {self.scan_timeout}s")

		self._hints[device.address] = tuple(dict.fromkeys([*request.service_uuids, *request.optional_services]))
		return device

	def device_identity(self, device: BLEDevice) -> str:
		return device.address

	def device_name(self, device: BLEDevice) -> Optional[str]:
		return device.name or None

	# ------------------------------------------------------------------
	# Link
	# ------------------------------------------------------------------
	async def connect(self, device: BLEDevice) -> BleakClient:
		kwargs: Dict[str, Any] = {}
		hints = self._hints.get(device.address)
		if self.restrict_services and hints:
			kwargs["services"] = list(hints)
		if self.adapter:
			kwargs["adapter"] = self.adapter

		client = BleakClient(
			device,
			disconnected_callback=self._on_client_disconnected,
			timeout=self.connect_timeout,
			**kwargs,
		)
		self._loop = asyncio.get_running_loop()
		await client.connect()
		logger.debug("GATT connected to %s", device.address)
		return client

	async def disconnect(self, server: BleakClient) -> None:
		await server.disconnect()

	def _on_client_disconnected(self, client: BleakClient) -> None:
		# Some backends call this from their own thread; listeners run on the loop.
		loop = self._loop
		if loop is None or loop.is_closed() or _running_loop() is loop:
			self._notify_listeners(client.address)
			return
		logger.debug("Handing disconnect of %s to the event loop", client.address)
		loop.call_soon_threadsafe(self._notify_listeners, client.address)

	def _notify_listeners(self, address: str) -> None:
		listeners = list(self._listeners.get(address, ()))
		logger.debug("bleak reported disconnect of %s (%d listeners)", address, len(listeners))
		for listener in listeners:
			try:
				listener()
			except Exception:  # pragma: no cover - listener failure must not break bleak
				logger.exception("Disconnect listener raised for %s", address)

	def add_disconnect_listener(self, device: BLEDevice, listener: DisconnectListener) -> None:
		self._listeners.setdefault(device.address, []).append(listener)

	def remove_disconnect_listener(self, device: BLEDevice, listener: DisconnectListener) -> None:
		listeners = self._listeners.get(device.address)
		if not listeners:
			return
		try:
			listeners.remove(listener)
		except ValueError:
			return
		if not listeners:
			self._listeners.pop(device.address, None)
			self._hints.pop(device.address, None)

	# ------------------------------------------------------------------
	# GATT
	# ------------------------------------------------------------------
	async def discover_service(self, server: BleakClient, uuid: str) -> BleakGATTService:
		await asyncio.sleep(0)
		service = server.services.get_service(uuid)
		if service is None:
			raise ServiceNotFound(uuid)
		return service

	async def discover_characteristic(self, service: BleakGATTService, uuid: str) -> BleakGATTCharacteristic:
		await asyncio.sleep(0)
		characteristic = service.get_characteristic(uuid)
		if characteristic is None:
			raise CharacteristicNotFound(uuid)
		return characteristic

	async def start_notify(
		self,
		server: BleakClient,
		characteristic: BleakGATTCharacteristic,
		callback: PayloadCallback,
	) -> None:
		def _wrapped(_: Any, data: bytearray) -> None:
			try:
				callback(bytes(data))
			except Exception:  # pragma: no cover - emitter isolates subscribers already
				logger.exception("Notification callback raised for %s", characteristic.uuid)

		await server.start_notify(characteristic, _wrapped)

	async def read(self, server: BleakClient, characteristic: BleakGATTCharacteristic) -> bytes:
		return bytes(await server.read_gatt_char(characteristic))


__all__ = [
	"PlatformAdapter",
	"BleakAdapter",
	"DeviceHandle",
	"ServerHandle",
	"ServiceHandle",
	"CharacteristicHandle",
	"DisconnectListener",
	"PayloadCallback",
]
