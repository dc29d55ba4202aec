from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect

from ecglink.client import EcgClient
from ecglink.decode import parse_heart_rate
from ecglink.errors import (
    CleanupFailed,
    ConcurrencyError,
    ConnectError,
    DisconnectError,
    NotConnected,
    PayloadError,
    SelectionError,
)
from ecglink.models import DataPacket, DeviceRequest

logger = logging.getLogger(__name__)

app = FastAPI(title="ecglink API", version="0.1.0")

_client: Optional[EcgClient] = None

EVENT_QUEUE_SIZE = 256


def configure(client: Optional[EcgClient]) -> Optional[EcgClient]:
    """Install the client used by every endpoint (``None`` resets it)."""
    global _client
    _client = client
    return client


def get_client() -> EcgClient:
    global _client
    if _client is None:
        _client = EcgClient()
    return _client


def _status_for(exc: ConnectError) -> int:
    if isinstance(exc, ConcurrencyError):
        return 409
    if isinstance(exc, SelectionError):
        return 404
    return 502


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time(), "connected": len(get_client().connected_devices())}


@app.post("/connect")
async def connect(
    name_prefix: Optional[str] = Query(None, description="Device name prefix"),
    address: Optional[str] = Query(None, description="Device address"),
    service_uuid: Optional[List[str]] = Query(None, description="Required advertised service UUIDs"),
):
    client = get_client()
    try:
        request = DeviceRequest(name_prefix=name_prefix, address=address, service_uuids=service_uuid or ())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid filter: {exc}")
    try:
        device_id = await client.connect(request)
    except ConnectError as exc:
        detail: Dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
        if exc.failed_at is not None:
            detail["failed_at"] = exc.failed_at.value
        if isinstance(exc, CleanupFailed):
            detail["cleanup_error"] = str(exc.cleanup_error)
        raise HTTPException(status_code=_status_for(exc), detail=detail)
    record = client.get_record(device_id)
    return record.to_dict() if record else {"device_id": device_id}


@app.get("/devices")
async def devices():
    client = get_client()
    records = (client.get_record(device_id) for device_id in client.connected_devices())
    return [record.to_dict() for record in records if record is not None]


@app.get("/devices/{device_id}")
async def device(device_id: str):
    record = get_client().get_record(device_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"{device_id} is not connected")
    return record.to_dict()


@app.get("/devices/{device_id}/battery")
async def battery(device_id: str):
    try:
        level = await get_client().read_battery(device_id)
    except NotConnected as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PayloadError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"device_id": device_id, "battery": level}


@app.post("/devices/{device_id}/disconnect")
async def disconnect(device_id: str):
    try:
        await get_client().disconnect(device_id)
    except DisconnectError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {"status": "disconnected", "device_id": device_id}


def _data_event(device_id: str, packet: DataPacket) -> Dict[str, Any]:
    event: Dict[str, Any] = {"type": "data", "device_id": device_id, **packet.to_dict()}
    if packet.channel == "ecg":
        try:
            event["heart_rate"] = parse_heart_rate(packet.payload).to_dict()
        except PayloadError:
            pass
    return event


@app.websocket("/events")
async def events(ws: WebSocket):
    """Stream data and disconnect events as JSON objects."""
    await ws.accept()
    client = get_client()
    queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue(maxsize=EVENT_QUEUE_SIZE)

    def _push(event: Dict[str, Any]) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("Event queue full; dropping %s event", event.get("type"))

    unsubscribe_data = client.on_data(lambda device_id, packet: _push(_data_event(device_id, packet)))
    unsubscribe_disconnect = client.on_disconnected(
        lambda device_id: _push({"type": "disconnected", "device_id": device_id})
    )

    async def _pump() -> None:
        while True:
            await ws.send_json(await queue.get())

    pump = asyncio.create_task(_pump())
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        return
    finally:
        unsubscribe_data()
        unsubscribe_disconnect()
        pump.cancel()
        with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await pump
