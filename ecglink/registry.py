"""Bookkeeping of live connections and in-flight connection attempts."""
from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Set

from ecglink.errors import AlreadyConnected, AlreadyConnecting
from ecglink.models import ConnectionRecord

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Single source of truth for "is this device connected".

    A device id is either absent, reserved by an attempt that is still
    running, or mapped to its :class:`ConnectionRecord`. Nothing here
    performs I/O. The adapter hands platform callbacks to the event loop, so
    mutations happen there; the lock keeps reads from other threads (an
    embedding application's workers) consistent.
    """

    def __init__(self) -> None:
        self._records: Dict[str, ConnectionRecord] = {}
        self._reserved: Set[str] = set()
        self._lock = threading.RLock()

    def reserve(self, device_id: str) -> None:
        with self._lock:
            if device_id in self._records:
                raise AlreadyConnected(f"{device_id} is already connected", device_id=device_id)
            if device_id in self._reserved:
                raise AlreadyConnecting(f"{device_id} has a connection attempt in flight", device_id=device_id)
            self._reserved.add(device_id)
        logger.debug("reserved %s", device_id)

    def release(self, device_id: str) -> None:
        with self._lock:
            self._reserved.discard(device_id)

    def is_reserved(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._reserved

    def insert(self, record: ConnectionRecord) -> None:
        """Store ``record``, converting its reservation if there is one."""
        with self._lock:
            if record.device_id in self._records:
                raise AlreadyConnected(f"{record.device_id} is already connected", device_id=record.device_id)
            self._records[record.device_id] = record
            self._reserved.discard(record.device_id)
        logger.debug("registered %s", record.device_id)

    def remove(self, device_id: str) -> Optional[ConnectionRecord]:
        with self._lock:
            record = self._records.pop(device_id, None)
        if record is not None:
            logger.debug("unregistered %s", device_id)
        return record

    def get(self, device_id: str) -> Optional[ConnectionRecord]:
        with self._lock:
            return self._records.get(device_id)

    def contains(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._records

    def device_ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, device_id: object) -> bool:
        return isinstance(device_id, str) and self.contains(device_id)


__all__ = ["ConnectionRegistry"]
