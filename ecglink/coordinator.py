"""Bridge between platform disconnect events and registry cleanup."""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ecglink.adapter import DisconnectListener, PlatformAdapter
from ecglink.emitter import NotificationEmitter
from ecglink.errors import DisconnectError
from ecglink.metrics import MetricsLogger
from ecglink.models import ConnectionState
from ecglink.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Lifecycle:
    device: Any
    listener: DisconnectListener
    established: bool = False
    pending: bool = False
    closing: bool = False


class DisconnectCoordinator:
    """Own the disconnect subscription of every connection lifecycle.

    A lifecycle starts with :meth:`attach` (before the GATT link is opened)
    and ends with exactly one of :meth:`detach` (the attempt failed) or the
    cleanup that follows a platform or explicit disconnect. Cleanup pops the
    lifecycle first, which is what makes repeated events no-ops.
    """

    def __init__(
        self,
        adapter: PlatformAdapter,
        registry: ConnectionRegistry,
        emitter: NotificationEmitter,
        *,
        metrics: Optional[MetricsLogger] = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._emitter = emitter
        self._metrics = metrics
        self._lifecycles: Dict[str, _Lifecycle] = {}

    # ------------------------------------------------------------------
    # Lifecycle hooks used by the orchestrator
    # ------------------------------------------------------------------
    def attach(self, device_id: str, device: Any) -> None:
        if device_id in self._lifecycles:
            raise RuntimeError(f"disconnect listener already attached for {device_id}")
        listener = functools.partial(self.on_platform_disconnect, device_id)
        self._lifecycles[device_id] = _Lifecycle(device=device, listener=listener)
        self._adapter.add_disconnect_listener(device, listener)

    def detach(self, device_id: str) -> None:
        lifecycle = self._lifecycles.pop(device_id, None)
        if lifecycle is not None:
            self._adapter.remove_disconnect_listener(lifecycle.device, lifecycle.listener)

    def is_pending(self, device_id: str) -> bool:
        lifecycle = self._lifecycles.get(device_id)
        return bool(lifecycle and lifecycle.pending)

    def mark_established(self, device_id: str) -> None:
        self._lifecycles[device_id].established = True

    # ------------------------------------------------------------------
    # Disconnect paths
    # ------------------------------------------------------------------
    def on_platform_disconnect(self, device_id: str) -> None:
        lifecycle = self._lifecycles.get(device_id)
        if lifecycle is None:
            logger.debug("Ignoring disconnect for untracked device %s", device_id)
            return
        if not lifecycle.established:
            logger.info("Device %s disconnected during discovery", device_id)
            lifecycle.pending = True
            return
        self._cleanup(device_id, reason="explicit" if lifecycle.closing else "platform")

    async def disconnect_explicit(self, device_id: str) -> None:
        """Close the transport of ``device_id`` and clean up once.

        Unknown or already-disconnected ids succeed without doing anything.
        """
        record = self._registry.get(device_id)
        if record is None:
            return
        lifecycle = self._lifecycles.get(device_id)
        if lifecycle is not None:
            # a platform event fired during the close belongs to this call
            lifecycle.closing = True
        try:
            await self._adapter.disconnect(record.server_handle)
        except Exception as exc:
            logger.warning("Closing GATT link of %s failed: %s", device_id, exc)
            self._cleanup(device_id, reason="explicit", error=str(exc))
            raise DisconnectError(f"Failed to disconnect {device_id}: {exc}", device_id=device_id) from exc
        self._cleanup(device_id, reason="explicit")

    def _cleanup(self, device_id: str, *, reason: str, error: Optional[str] = None) -> bool:
        lifecycle = self._lifecycles.pop(device_id, None)
        if lifecycle is None:
            return False
        self._adapter.remove_disconnect_listener(lifecycle.device, lifecycle.listener)
        record = self._registry.remove(device_id)
        if record is not None:
            record.state = ConnectionState.DISCONNECTED
        self._metrics_log(device_id, reason, error)
        self._emitter.emit_disconnected(device_id)
        self._emitter.drop_device(device_id)
        return True

    def _metrics_log(self, device_id: str, reason: str, error: Optional[str]) -> None:
        if not self._metrics:
            return
        try:
            self._metrics.log(
                "disconnect",
                device_id=device_id,
                status="error" if error else "ok",
                message=error,
                extra={"reason": reason},
            )
        except Exception:  # pragma: no cover - logging must not break cleanup
            logger.debug("Metrics logging failed for disconnect", exc_info=True)


__all__ = ["DisconnectCoordinator"]
