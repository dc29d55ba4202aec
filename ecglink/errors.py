"""Exception taxonomy for connection, discovery and teardown failures."""
from __future__ import annotations

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ecglink.models.connection_state import ConnectionState


class EcgLinkError(Exception):
    """Base class for every error raised by ecglink."""


class ConnectError(EcgLinkError):
    """A ``connect`` attempt was aborted.

    ``failed_at`` is filled in by the orchestrator with the state the attempt
    was in when the failure happened.
    """

    def __init__(self, message: str, *, device_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.device_id = device_id
        self.failed_at: Optional["ConnectionState"] = None


# Selection --------------------------------------------------------------

class SelectionError(ConnectError):
    """The adapter could not hand over a device. Nothing to clean up."""


class NoDeviceSelected(SelectionError):
    pass


class AdapterUnsupported(SelectionError):
    pass


# Transport --------------------------------------------------------------

class TransportError(ConnectError):
    """The GATT link failed while the attempt was using it."""


class GattConnectError(TransportError):
    pass


class RequiredServiceMissing(TransportError):
    def __init__(self, message: str, *, device_id: Optional[str] = None, uuid: Optional[str] = None) -> None:
        super().__init__(message, device_id=device_id)
        self.uuid = uuid


class DisconnectedDuringDiscovery(TransportError):
    pass


# Concurrency ------------------------------------------------------------

class ConcurrencyError(ConnectError):
    """Another attempt or record already owns the device id."""


class AlreadyConnected(ConcurrencyError):
    pass


class AlreadyConnecting(ConcurrencyError):
    pass


class CleanupFailed(ConnectError):
    """A fatal error whose server-handle cleanup failed as well."""

    def __init__(self, original: ConnectError, cleanup_error: BaseException) -> None:
        super().__init__(
            f"{original} (closing the GATT server also failed: {cleanup_error})",
            device_id=original.device_id,
        )
        self.original = original
        self.cleanup_error = cleanup_error


# Adapter-level discovery ------------------------------------------------

class DiscoveryError(EcgLinkError):
    def __init__(self, uuid: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{self.kind} {uuid} not found")
        self.uuid = uuid

    kind = "attribute"


class ServiceNotFound(DiscoveryError):
    kind = "service"


class CharacteristicNotFound(DiscoveryError):
    kind = "characteristic"


class DisconnectError(EcgLinkError):
    """Closing the transport failed. Bookkeeping cleanup has still run."""

    def __init__(self, message: str, *, device_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.device_id = device_id


class NotConnected(EcgLinkError, KeyError):
    """The device id has no established connection."""

    def __init__(self, device_id: str) -> None:
        super().__init__(f"{device_id} is not connected")
        self.device_id = device_id

    def __str__(self) -> str:
        return str(self.args[0])


class PayloadError(EcgLinkError, ValueError):
    """A characteristic value could not be decoded."""


__all__ = [
    "EcgLinkError",
    "ConnectError",
    "SelectionError",
    "NoDeviceSelected",
    "AdapterUnsupported",
    "TransportError",
    "GattConnectError",
    "RequiredServiceMissing",
    "DisconnectedDuringDiscovery",
    "ConcurrencyError",
    "AlreadyConnected",
    "AlreadyConnecting",
    "CleanupFailed",
    "DiscoveryError",
    "ServiceNotFound",
    "CharacteristicNotFound",
    "DisconnectError",
    "NotConnected",
    "PayloadError",
]
