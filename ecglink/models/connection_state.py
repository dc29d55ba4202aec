from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """Phases of a connection attempt and of the record it produces."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_SERVER = "awaiting_server"
    DISCOVERING_REQUIRED = "discovering_required"
    DISCOVERING_OPTIONAL = "discovering_optional"
    ESTABLISHED = "established"
    FAILED = "failed"
    DISCONNECTED = "disconnected"

    @property
    def terminal(self) -> bool:
        return self in (ConnectionState.ESTABLISHED, ConnectionState.FAILED, ConnectionState.DISCONNECTED)
