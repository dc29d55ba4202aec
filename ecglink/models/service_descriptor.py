"""GATT identifiers of the sensor and the discovery table built from them."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from bleak.uuids import normalize_uuid_16, normalize_uuid_str

HEART_RATE_SERVICE = normalize_uuid_16(0x180D)
HEART_RATE_MEASUREMENT = normalize_uuid_16(0x2A37)
BATTERY_SERVICE = normalize_uuid_16(0x180F)
BATTERY_LEVEL = normalize_uuid_16(0x2A19)
GENERIC_ATTRIBUTE_SERVICE = normalize_uuid_16(0x1801)

# Custom sensor firmware exposes motion data on a vendor service. The values
# must match the firmware flashed on the strap; ConnectorConfig overrides them.
MOVEMENT_SERVICE = "6b200000-ff4e-4979-8186-fb7ba486fcd7"
ACCELEROMETER = "6b200001-ff4e-4979-8186-fb7ba486fcd7"
GYROSCOPE = "6b200002-ff4e-4979-8186-fb7ba486fcd7"
MAGNETOMETER = "6b200003-ff4e-4979-8186-fb7ba486fcd7"


def normalize_uuid(value: int | str) -> str:
    """Return the 128-bit lower-case form of a 16-bit int or any UUID string."""
    if isinstance(value, int):
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"16-bit UUID out of range: {value:#x}")
        return normalize_uuid_16(value)
    return normalize_uuid_str(value)


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    """One service the orchestrator attempts, and whether it may be absent.

    ``characteristics`` maps a channel name to the characteristic UUID. For an
    optional service all characteristics form one group: a missing member makes
    the whole group absent.
    """

    name: str
    uuid: str
    required: bool
    characteristics: tuple[tuple[str, str], ...]

    @property
    def channels(self) -> tuple[str, ...]:
        return tuple(name for name, _ in self.characteristics)


HEART_RATE = ServiceDescriptor(
    name="heart_rate",
    uuid=HEART_RATE_SERVICE,
    required=True,
    characteristics=(("ecg", HEART_RATE_MEASUREMENT),),
)
BATTERY = ServiceDescriptor(
    name="battery",
    uuid=BATTERY_SERVICE,
    required=False,
    characteristics=(("battery", BATTERY_LEVEL),),
)


def movement_descriptor(
    service: str = MOVEMENT_SERVICE,
    acc: str = ACCELEROMETER,
    gyr: str = GYROSCOPE,
    mag: str = MAGNETOMETER,
) -> ServiceDescriptor:
    return ServiceDescriptor(
        name="movement",
        uuid=normalize_uuid(service),
        required=False,
        characteristics=(
            ("acc", normalize_uuid(acc)),
            ("gyr", normalize_uuid(gyr)),
            ("mag", normalize_uuid(mag)),
        ),
    )


MOVEMENT = movement_descriptor()

DEFAULT_SERVICES: Sequence[ServiceDescriptor] = (HEART_RATE, BATTERY, MOVEMENT)

__all__ = [
    "HEART_RATE_SERVICE",
    "HEART_RATE_MEASUREMENT",
    "BATTERY_SERVICE",
    "BATTERY_LEVEL",
    "GENERIC_ATTRIBUTE_SERVICE",
    "MOVEMENT_SERVICE",
    "ACCELEROMETER",
    "GYROSCOPE",
    "MAGNETOMETER",
    "ServiceDescriptor",
    "HEART_RATE",
    "BATTERY",
    "MOVEMENT",
    "DEFAULT_SERVICES",
    "movement_descriptor",
    "normalize_uuid",
]
