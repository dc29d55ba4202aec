"""ecglink command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from typing import Any, List, Optional

import uvicorn
from rich.console import Console
from rich.table import Table

from ecglink.client import EcgClient
from ecglink.config import ConnectorConfig
from ecglink.decode import parse_heart_rate
from ecglink.errors import ConnectError, PayloadError
from ecglink.models import ConnectionRecord, DataPacket, DeviceRequest

logger = logging.getLogger(__name__)


def _config_from_args(args: argparse.Namespace) -> ConnectorConfig:
	kwargs: dict[str, Any] = {
		"adapter": args.adapter,
		"scan_timeout": args.scan_timeout,
		"connect_timeout": args.connect_timeout,
		"metrics_path": args.metrics,
	}
	if args.movement_service:
		kwargs["movement_service"] = args.movement_service
	return ConnectorConfig(**kwargs)


def _request_from_args(args: argparse.Namespace) -> DeviceRequest:
	return DeviceRequest(
		name_prefix=args.name_prefix,
		address=args.address,
		service_uuids=args.service_uuid or (),
	)


def _print_record(console: Console, record: ConnectionRecord, as_json: bool) -> None:
	if as_json:
		json.dump({"event": "connected", **record.to_dict()}, sys.stdout)
		sys.stdout.write("\n")
		return
	table = Table(title=f"Connected to {record.name or record.device_id}", show_lines=False)
	table.add_column("FEATURE")
	table.add_column("STATUS")
	for feature in ("ecg", "battery", "movement"):
		table.add_row(feature, "ok" if feature in record.features() else "missing")
	console.print(table)
	for warning in record.warnings:
		console.print(f"[yellow]warning[/yellow] {warning}")


async def _cmd_connect(args: argparse.Namespace) -> int:
	console = Console()
	config = _config_from_args(args)
	request = _request_from_args(args)
	stop_event = asyncio.Event()

	def _on_data(device_id: str, packet: DataPacket) -> None:
		if packet.channel != "ecg":
			return
		try:
			measurement = parse_heart_rate(packet.payload)
		except PayloadError as exc:
			logger.debug("Skipping malformed heart rate payload from %s: %s", device_id, exc)
			return
		if args.json:
			json.dump({"event": "heart_rate", "device_id": device_id, **measurement.to_dict()}, sys.stdout)
			sys.stdout.write("\n")
			sys.stdout.flush()
		else:
			rr = ", ".join(f"{value:.3f}" for value in measurement.rr_intervals)
			console.print(f"{device_id}  {measurement.bpm:>3} bpm  rr=[{rr}]")

	def _on_disconnected(device_id: str) -> None:
		console.print(f"[red]{device_id} disconnected[/red]")
		stop_event.set()

	async with EcgClient(config) as client:
		client.on_disconnected(_on_disconnected)
		try:
			device_id = await client.connect(request, on_data=_on_data)
		except ConnectError as exc:
			console.print(f"[red]connect failed:[/red] {exc}")
			return 1

		record = client.get_record(device_id)
		if record is not None:
			_print_record(console, record, args.json)

		loop = asyncio.get_running_loop()
		for sig in (signal.SIGINT, signal.SIGTERM):
			with contextlib.suppress(NotImplementedError):
				loop.add_signal_handler(sig, stop_event.set)

		with contextlib.suppress(asyncio.TimeoutError):
			await asyncio.wait_for(stop_event.wait(), timeout=args.runtime)
	return 0


async def _cmd_serve(args: argparse.Namespace) -> int:
	from ecglink import api

	client = api.configure(EcgClient(_config_from_args(args)))
	server = uvicorn.Server(uvicorn.Config(api.app, host=args.host, port=args.port, log_level=args.log_level.lower()))
	try:
		await server.serve()
	finally:
		await client.close()
	return 0


def _connector_options() -> argparse.ArgumentParser:
	options = argparse.ArgumentParser(add_help=False)
	options.add_argument("--adapter", help="BLE adapter identifier")
	options.add_argument("--scan-timeout", type=float, default=10.0, help="Device selection timeout seconds")
	options.add_argument("--connect-timeout", type=float, default=10.0, help="GATT connection timeout seconds")
	options.add_argument("--movement-service", help="UUID of the vendor movement service")
	options.add_argument("--metrics", help="Path to a metrics CSV")
	return options


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="ecglink BLE ECG sensor utilities")
	parser.add_argument("--log-level", default="WARNING", help="Python logging level")
	sub = parser.add_subparsers(dest="command", required=True)
	options = _connector_options()

	connect = sub.add_parser("connect", parents=[options], help="Connect to a sensor and stream heart rate")
	connect.add_argument("--name-prefix", help="Match devices whose name starts with this prefix")
	connect.add_argument("--address", help="Match a single device address")
	connect.add_argument("--service-uuid", action="append", help="Require an advertised service UUID", dest="service_uuid")
	connect.add_argument("--runtime", type=float, help="Stream for this many seconds, then disconnect")
	connect.add_argument("--json", action="store_true", help="Output JSON lines")
	connect.set_defaults(handler=_cmd_connect)

	serve = sub.add_parser("serve", parents=[options], help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
	try:
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	return 2


if __name__ == "__main__":
	sys.exit(main())
