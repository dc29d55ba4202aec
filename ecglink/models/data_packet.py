from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True, slots=True)
class DataPacket:
    """Raw characteristic value received from a connected sensor."""

    channel: str
    payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "payload": self.payload.hex(),
            "received_at": self.received_at.isoformat(timespec="milliseconds"),
        }
