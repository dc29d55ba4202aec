"""Fan-out of disconnect and data events to subscribers."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from ecglink.models import DataPacket

logger = logging.getLogger(__name__)

DisconnectHandler = Callable[[str], Union[None, Awaitable[None]]]
DataHandler = Callable[[str, DataPacket], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class NotificationEmitter:
    """Deliver ``disconnected`` and ``data_received`` events.

    Handlers run in subscription order for every event, and events are
    delivered in emission order. A handler that raises is logged and skipped;
    a handler returning a coroutine is scheduled as a task so it cannot hold up
    the handlers after it.
    """

    def __init__(self) -> None:
        self._disconnect_handlers: List[DisconnectHandler] = []
        self._data_handlers: List[DataHandler] = []
        self._device_handlers: Dict[str, List[DataHandler]] = {}
        self._tasks: Set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------
    def on_disconnected(self, handler: DisconnectHandler) -> Unsubscribe:
        self._disconnect_handlers.append(handler)
        return lambda: self._discard(self._disconnect_handlers, handler)

    def on_data(self, handler: DataHandler) -> Unsubscribe:
        self._data_handlers.append(handler)
        return lambda: self._discard(self._data_handlers, handler)

    def on_device_data(self, device_id: str, handler: DataHandler) -> Unsubscribe:
        """Subscribe to data of one device; dropped with :meth:`drop_device`."""
        handlers = self._device_handlers.setdefault(device_id, [])
        handlers.append(handler)
        return lambda: self._discard(self._device_handlers.get(device_id, []), handler)

    def drop_device(self, device_id: str) -> None:
        self._device_handlers.pop(device_id, None)

    @staticmethod
    def _discard(handlers: list, handler: Any) -> None:
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------
    def emit_disconnected(self, device_id: str) -> None:
        logger.info("[-] Device disconnected: %s", device_id)
        for handler in list(self._disconnect_handlers):
            self._dispatch(handler, device_id)

    def emit_data(self, device_id: str, channel: str, payload: bytes) -> None:
        packet = DataPacket(channel=channel, payload=bytes(payload))
        handlers = list(self._data_handlers) + list(self._device_handlers.get(device_id, ()))
        for handler in handlers:
            self._dispatch(handler, device_id, packet)

    def _dispatch(self, handler: Callable[..., Any], *args: Any) -> None:
        try:
            outcome = handler(*args)
        except Exception:
            logger.exception("Subscriber %r raised while handling %r", handler, args[0])
            return
        if asyncio.iscoroutine(outcome):
            self._schedule(outcome)

    def _schedule(self, coro: Awaitable[Any]) -> None:
        loop: Optional[asyncio.AbstractEventLoop]
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None:
            logger.error("Dropping coroutine subscriber outside of an event loop")
            coro.close()  # type: ignore[attr-defined]
            return
        task = loop.create_task(coro)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async subscriber failed", exc_info=exc)

    async def drain(self) -> None:
        """Wait for scheduled coroutine subscribers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


__all__ = [
    "NotificationEmitter",
    "DisconnectHandler",
    "DataHandler",
    "Unsubscribe",
]
