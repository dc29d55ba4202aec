from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .connection_state import ConnectionState


@dataclass(frozen=True, slots=True)
class RequiredCharacteristics:
    ecg: Any
    battery: Optional[Any] = None


@dataclass(frozen=True, slots=True)
class MovementCharacteristics:
    """Accelerometer, gyroscope and magnetometer; only ever all three."""

    acc: Any
    gyr: Any
    mag: Any

    def channels(self) -> Dict[str, Any]:
        return {"acc": self.acc, "gyr": self.gyr, "mag": self.mag}


@dataclass(frozen=True, slots=True)
class FeatureWarning:
    """Advisory outcome of an optional service group that could not be used."""

    group: str
    message: str
    uuid: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.group}: {self.message}"


@dataclass(slots=True)
class ConnectionRecord:
    """A live connection owned by the registry.

    ``device_handle`` and ``server_handle`` belong to the record from the
    moment it is inserted until the coordinator removes it.
    """

    device_id: str
    device_handle: Any
    server_handle: Any
    required: RequiredCharacteristics
    movement: Optional[MovementCharacteristics] = None
    state: ConnectionState = ConnectionState.ESTABLISHED
    warnings: tuple[FeatureWarning, ...] = ()
    name: Optional[str] = None
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def battery(self) -> Optional[Any]:
        return self.required.battery

    @property
    def has_movement(self) -> bool:
        return self.movement is not None

    def features(self) -> list[str]:
        names = ["ecg"]
        if self.required.battery is not None:
            names.append("battery")
        if self.movement is not None:
            names.append("movement")
        return names

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "state": self.state.value,
            "features": self.features(),
            "warnings": [str(w) for w in self.warnings],
            "connected_at": self.connected_at.isoformat(timespec="milliseconds"),
        }
