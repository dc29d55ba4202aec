"""CSV event log for connection attempts, discovery steps and disconnects."""
from __future__ import annotations

import contextlib
import contextvars
import csv
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Sequence


DEFAULT_FIELDS: Sequence[str] = (
    "timestamp",
    "event",
    "device_id",
    "status",
    "value",
    "message",
    "extra",
)


def _encode_extra(extra: Mapping[str, Any]) -> str:
    if not extra:
        return ""
    try:
        return json.dumps(extra, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError):
        return repr(dict(extra))


class MetricsLogger:
    """Append one CSV row per connection event.

    Each row is flushed as soon as it is written, so ``tail -f`` shows a
    discovery as it progresses. Context from nested :meth:`scope` blocks is
    merged into the ``extra`` column; a scoped ``device_id`` fills the
    ``device_id`` column when the call does not pass one.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        fields: Sequence[str] | None = None,
        static_extra: Mapping[str, Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.path = Path(path)
        self.fields: Sequence[str] = tuple(fields or DEFAULT_FIELDS)
        self._static_extra = dict(static_extra or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._scopes: contextvars.ContextVar[tuple[Mapping[str, Any], ...]] = contextvars.ContextVar(
            f"ecglink_metrics_{id(self)}", default=()
        )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists() or self.path.stat().st_size == 0:
            self._append(None)

    def log(
        self,
        event: str,
        *,
        device_id: Optional[str] = None,
        status: Optional[str] = None,
        value: Optional[float] = None,
        message: Optional[str] = None,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None:
        merged: Dict[str, Any] = dict(self._static_extra)
        for layer in self._scopes.get():
            merged.update(layer)
        merged.update(extra or {})
        scoped_device = merged.pop("device_id", None)
        self._append(
            {
                "timestamp": self._timestamp(),
                "event": event,
                "device_id": device_id or scoped_device or "",
                "status": status or "",
                "value": "" if value is None else value,
                "message": message or "",
                "extra": _encode_extra(merged),
            }
        )

    @contextlib.contextmanager
    def scope(self, extra: Mapping[str, Any] | None = None, **values: Any) -> Iterator[None]:
        layer = {**(extra or {}), **values}
        token = self._scopes.set(self._scopes.get() + (layer,))
        try:
            yield
        finally:
            self._scopes.reset(token)

    @contextlib.contextmanager
    def timer(self, event: str, *, extra: Optional[Mapping[str, Any]] = None, **values: Any) -> Iterator[None]:
        """Log ``event`` with the block's duration in seconds as ``value``."""
        layer = {**(extra or {}), **values}
        started = perf_counter()
        try:
            with self.scope(layer):
                yield
        except Exception as exc:
            self.log(
                event,
                status="error",
                value=perf_counter() - started,
                message=str(exc),
                extra={**layer, "exception": type(exc).__name__},
            )
            raise
        self.log(event, status="ok", value=perf_counter() - started, extra=layer)

    def _append(self, row: Optional[Dict[str, Any]]) -> None:
        with self._lock, self.path.open("a", newline="", encoding="utf-8") as handle:
            writer = csv.DictWriter(handle, fieldnames=self.fields, extrasaction="ignore")
            if row is None:
                writer.writeheader()
            else:
                writer.writerow(row)
            handle.flush()

    def _timestamp(self) -> str:
        stamp = self._clock()
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        return stamp.astimezone(timezone.utc).isoformat(timespec="milliseconds")


__all__ = ["MetricsLogger", "DEFAULT_FIELDS"]
