"""Device filters handed to the platform adapter."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from .service_descriptor import normalize_uuid


@dataclass(slots=True)
class DeviceRequest:
	"""Filters used to pick one sensor, plus optional-service hints.

	``optional_services`` never narrow the match; adapters use them to expose
	services that are not advertised (and bleak to limit GATT discovery).
	"""

	name_prefix: Optional[str] = None
	service_uuids: Sequence[int | str] = ()
	address: Optional[str] = None
	optional_services: Sequence[int | str] = ()
	_service_index: frozenset[str] = field(init=False, repr=False, default=frozenset())

	def __post_init__(self) -> None:
		if self.name_prefix is not None and not self.name_prefix:
			raise ValueError("name_prefix must not be empty when provided")
		self.service_uuids = tuple(normalize_uuid(uuid) for uuid in self.service_uuids)
		self.optional_services = tuple(normalize_uuid(uuid) for uuid in self.optional_services)
		self._service_index = frozenset(self.service_uuids)

	def with_hints(self, hints: Sequence[int | str]) -> "DeviceRequest":
		"""Return a copy whose optional services also contain ``hints``."""
		merged: list[str] = list(self.optional_services)
		for uuid in hints:
			normalized = normalize_uuid(uuid)
			if normalized not in merged:
				merged.append(normalized)
		return DeviceRequest(
			name_prefix=self.name_prefix,
			service_uuids=self.service_uuids,
			address=self.address,
			optional_services=merged,
		)

	def matches(self, device: Any, advertisement: Any | None = None) -> bool:
		if self.address and (getattr(device, "address", "") or "").lower() != self.address.lower():
			return False

		if self.name_prefix:
			observed_name = getattr(device, "name", None)
			if advertisement is not None and getattr(advertisement, "local_name", None):
				observed_name = advertisement.local_name
			if not observed_name or not observed_name.startswith(self.name_prefix):
				return False

		if self._service_index:
			observed: set[str] = set()
			if advertisement is not None and getattr(advertisement, "service_uuids", None):
				observed.update(normalize_uuid(uuid) for uuid in advertisement.service_uuids)
			metadata = getattr(device, "metadata", None) or {}
			if metadata.get("uuids"):
				observed.update(normalize_uuid(str(uuid)) for uuid in metadata["uuids"])
			if not observed.issuperset(self._service_index):
				return False

		return True


__all__ = ["DeviceRequest"]
