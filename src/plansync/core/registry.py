"""
Device registry: computers (full devices) and mobile devices (limited
devices) merged into one identity-keyed mapping of normalized records.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

UNKNOWN = "Unknown"


class DeviceKind(str, Enum):
    FULL = "Computer"
    LIMITED = "Mobile Device"


def normalize_identity(value: Any) -> str:
    """Canonical string form of a device identity (42 and "42" compare equal)."""
    return str(value).strip()


def _dig(payload: Any, *path: str) -> Any:
    cur = payload
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _text(payload: Any, *path: str) -> str:
    val = _dig(payload, *path)
    if val is None:
        return UNKNOWN
    s = str(val).strip()
    return s or UNKNOWN


@dataclass(frozen=True)
class DeviceRecord:
    identity: str
    kind: DeviceKind
    display_name: str = UNKNOWN
    serial_number: str = UNKNOWN
    model: str = UNKNOWN
    os_version: str = UNKNOWN
    last_contact: str = UNKNOWN
    username: str = UNKNOWN
    real_name: str = UNKNOWN
    email: str = UNKNOWN
    position: str = UNKNOWN

    @property
    def supports_annotations(self) -> bool:
        return self.kind is DeviceKind.FULL


def computer_record(item: Mapping[str, Any]) -> Optional[DeviceRecord]:
    """Build a record from a /api/v1/computers-inventory result."""
    raw_id = item.get("id")
    if raw_id is None or not normalize_identity(raw_id):
        return None
    return DeviceRecord(
        identity=normalize_identity(raw_id),
        kind=DeviceKind.FULL,
        display_name=_text(item, "general", "name"),
        serial_number=_text(item, "hardware", "serialNumber"),
        model=_text(item, "hardware", "model"),
        os_version=_text(item, "operatingSystem", "version"),
        last_contact=_text(item, "general", "lastContactTime"),
        username=_text(item, "userAndLocation", "username"),
        real_name=_text(item, "userAndLocation", "realname"),
        email=_text(item, "userAndLocation", "email"),
        position=_text(item, "userAndLocation", "position"),
    )


def mobile_record(item: Mapping[str, Any]) -> Optional[DeviceRecord]:
    """Build a record from a /api/v2/mobile-devices/detail result."""
    raw_id = item.get("mobileDeviceId")
    if raw_id is None:
        raw_id = item.get("id")
    if raw_id is None or not normalize_identity(raw_id):
        return None
    return DeviceRecord(
        identity=normalize_identity(raw_id),
        kind=DeviceKind.LIMITED,
        display_name=_text(item, "general", "displayName"),
        serial_number=_text(item, "hardware", "serialNumber"),
        model=_text(item, "hardware", "model"),
        os_version=_text(item, "general", "osVersion"),
        last_contact=_text(item, "general", "lastInventoryUpdateDate"),
        username=_text(item, "userAndLocation", "username"),
        real_name=_text(item, "userAndLocation", "realName"),
        email=_text(item, "userAndLocation", "emailAddress"),
        position=_text(item, "userAndLocation", "position"),
    )


@dataclass
class DeviceRegistry(Mapping[str, DeviceRecord]):
    """Identity -> DeviceRecord, in ingestion order."""
    _records: "OrderedDict[str, DeviceRecord]" = field(default_factory=OrderedDict)
    collisions: int = 0
    skipped: int = 0

    def __getitem__(self, identity: str) -> DeviceRecord:
        return self._records[normalize_identity(identity)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identity: object) -> bool:
        return normalize_identity(identity) in self._records

    def add(self, record: DeviceRecord) -> bool:
        """Insert *record*; an identity already present is kept (first wins)."""
        if record.identity in self._records:
            self.collisions += 1
            return False
        self._records[record.identity] = record
        return True

    def records(self) -> Iterable[DeviceRecord]:
        return self._records.values()

    def count_by_kind(self) -> Dict[DeviceKind, int]:
        counts = {kind: 0 for kind in DeviceKind}
        for rec in self._records.values():
            counts[rec.kind] += 1
        return counts


def build_registry(
    full_items: Iterable[Mapping[str, Any]],
    limited_items: Iterable[Mapping[str, Any]],
    *,
    logger: Optional[logging.LoggerAdapter] = None,
) -> DeviceRegistry:
    """Merge computers and mobile devices into one registry.

    Computers are ingested first, so on a same-identity collision across
    kinds the computer is kept and the mobile device is dropped (logged).
    """
    log = logger or logging.getLogger("plansync.registry")
    registry = DeviceRegistry()

    sources: Tuple[Tuple[str, Iterable[Mapping[str, Any]], Any], ...] = (
        ("computer", full_items, computer_record),
        ("mobile device", limited_items, mobile_record),
    )
    for label, items, factory in sources:
        for item in items:
            record = factory(item) if isinstance(item, Mapping) else None
            if record is None:
                registry.skipped += 1
                log.warning("Skipping %s without an identity: %s", label, str(item)[:120])
                continue
            if not registry.add(record):
                existing = registry[record.identity]
                log.warning(
                    "Duplicate device identity %s (%s already registered as %s); keeping the first",
                    record.identity, label, existing.kind.value,
                )

    by_kind = registry.count_by_kind()
    log.info(
        "Device registry built: total=%d computers=%d mobile_devices=%d collisions=%d skipped=%d",
        len(registry), by_kind[DeviceKind.FULL], by_kind[DeviceKind.LIMITED],
        registry.collisions, registry.skipped,
    )
    return registry
