"""BLE connection core for wearable ECG sensors."""
from ecglink.client import EcgClient
from ecglink.config import ConnectorConfig
from ecglink.errors import ConnectError, DisconnectError, EcgLinkError, NotConnected
from ecglink.models import ConnectionRecord, ConnectionState, DataPacket, DeviceRequest

__version__ = "0.1.0"

__all__ = [
    "EcgClient",
    "ConnectorConfig",
    "ConnectError",
    "DisconnectError",
    "EcgLinkError",
    "NotConnected",
    "ConnectionRecord",
    "ConnectionState",
    "DataPacket",
    "DeviceRequest",
]
