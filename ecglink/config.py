"""Configuration bundle for :class:`ecglink.client.EcgClient`."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from ecglink.models.service_descriptor import (
    ACCELEROMETER,
    BATTERY,
    GENERIC_ATTRIBUTE_SERVICE,
    GYROSCOPE,
    HEART_RATE,
    MAGNETOMETER,
    MOVEMENT_SERVICE,
    ServiceDescriptor,
    movement_descriptor,
)


@dataclass(slots=True)
class ConnectorConfig:
    adapter: Optional[str] = None
    scan_timeout: float = 10.0
    connect_timeout: float = 10.0
    metrics_path: Optional[str | Path] = None
    movement_service: str = MOVEMENT_SERVICE
    accelerometer: str = ACCELEROMETER
    gyroscope: str = GYROSCOPE
    magnetometer: str = MAGNETOMETER
    extra_hints: Sequence[int | str] = field(default_factory=lambda: (GENERIC_ATTRIBUTE_SERVICE,))
    restrict_services: bool = True

    def __post_init__(self) -> None:
        if self.scan_timeout <= 0:
            raise ValueError("scan_timeout must be positive")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")

    def services(self) -> tuple[ServiceDescriptor, ...]:
        movement = movement_descriptor(
            self.movement_service,
            self.accelerometer,
            self.gyroscope,
            self.magnetometer,
        )
        return (HEART_RATE, BATTERY, movement)


__all__ = ["ConnectorConfig"]
