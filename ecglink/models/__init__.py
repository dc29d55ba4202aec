"""Data model shared by the registry, orchestrator and coordinator."""
from .connection_record import (
    ConnectionRecord,
    FeatureWarning,
    MovementCharacteristics,
    RequiredCharacteristics,
)
from .connection_state import ConnectionState
from .data_packet import DataPacket
from .device_request import DeviceRequest
from .service_descriptor import DEFAULT_SERVICES, ServiceDescriptor

__all__ = [
    "ConnectionRecord",
    "ConnectionState",
    "DataPacket",
    "DeviceRequest",
    "FeatureWarning",
    "MovementCharacteristics",
    "RequiredCharacteristics",
    "ServiceDescriptor",
    "DEFAULT_SERVICES",
]
