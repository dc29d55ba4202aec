"""Decoders for the standard heart-rate and battery characteristic values."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from ecglink.errors import PayloadError

_HR_VALUE_16BIT = 0x01
_SENSOR_CONTACT_DETECTED = 0x02
_SENSOR_CONTACT_SUPPORTED = 0x04
_ENERGY_EXPENDED_PRESENT = 0x08
_RR_INTERVAL_PRESENT = 0x10


@dataclass(frozen=True, slots=True)
class HeartRateMeasurement:
    bpm: int
    rr_intervals: List[float] = field(default_factory=list)  # seconds
    sensor_contact: Optional[bool] = None
    energy_expended: Optional[int] = None  # kJ

    def to_dict(self) -> dict:
        return {
            "bpm": self.bpm,
            "rr_intervals": list(self.rr_intervals),
            "sensor_contact": self.sensor_contact,
            "energy_expended": self.energy_expended,
        }


def parse_heart_rate(payload: bytes) -> HeartRateMeasurement:
    """Decode a Heart Rate Measurement (0x2A37) value.

    RR intervals arrive in units of 1/1024 s and are returned in seconds.
    ``sensor_contact`` is ``None`` when the sensor does not report contact.
    """
    data = bytes(payload)
    if not data:
        raise PayloadError("empty heart rate payload")
    flags = data[0]
    idx = 1

    if flags & _HR_VALUE_16BIT:
        if len(data) < idx + 2:
            raise PayloadError("truncated 16-bit heart rate value")
        bpm = int.from_bytes(data[idx:idx + 2], "little")
        idx += 2
    else:
        if len(data) < idx + 1:
            raise PayloadError("truncated 8-bit heart rate value")
        bpm = data[idx]
        idx += 1

    contact: Optional[bool] = None
    if flags & _SENSOR_CONTACT_SUPPORTED:
        contact = bool(flags & _SENSOR_CONTACT_DETECTED)

    energy: Optional[int] = None
    if flags & _ENERGY_EXPENDED_PRESENT:
        if len(data) < idx + 2:
            raise PayloadError("truncated energy expended field")
        energy = int.from_bytes(data[idx:idx + 2], "little")
        idx += 2

    rr: List[float] = []
    if flags & _RR_INTERVAL_PRESENT:
        if (len(data) - idx) % 2:
            raise PayloadError("odd number of bytes in RR interval list")
        while idx + 1 < len(data):
            rr.append(int.from_bytes(data[idx:idx + 2], "little") / 1024.0)
            idx += 2

    return HeartRateMeasurement(bpm=bpm, rr_intervals=rr, sensor_contact=contact, energy_expended=energy)


def parse_battery_level(payload: bytes) -> int:
    """Decode a Battery Level (0x2A19) value in percent."""
    data = bytes(payload)
    if len(data) != 1:
        raise PayloadError(f"battery level must be one byte, got {len(data)}")
    level = data[0]
    if level > 100:
        raise PayloadError(f"battery level out of range: {level}")
    return level


__all__ = ["HeartRateMeasurement", "parse_heart_rate", "parse_battery_level"]
