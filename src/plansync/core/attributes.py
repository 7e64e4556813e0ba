"""
Extension attribute synchronization.

Each computer receives five string attributes describing its managed
software update plan. The definitions must exist before any write; they
are created on demand only when explicitly authorized.

Writes are sequential and best effort: one PATCH per computer, a failure
is recorded for that device and the batch moves on. Mobile devices are
skipped, the computer extension attribute store does not cover them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Protocol

from .errors import AnnotationWriteError, MissingAnnotationDefinition, PlanSyncError, TransportError
from .fetcher import fetch_all
from .jamf_client import JamfClient
from .plans import ANNOTATION_NAMES, StatusRecord
from .registry import DeviceRegistry
from .stats import RunStatistics

DEFINITIONS_ENDPOINT = "/api/v1/computer-extension-attributes"
INVENTORY_DETAIL_ENDPOINT = "/api/v1/computers-inventory-detail/{id}"

DESCRIPTIONS: Dict[str, str] = {
    "Plan_Status": "State of the latest managed software update plan",
    "Plan_Action": "Update action of the latest managed software update plan",
    "Plan_Version_Type": "Version type targeted by the latest managed software update plan",
    "Plan_Error_Reasons": "Error reasons reported by the latest managed software update plan",
    "Plan_Force_Install_Date": "Forced install date of the latest managed software update plan",
}

UPDATED = "UPDATED"
SKIPPED = "SKIPPED"
ERROR = "ERROR"


@dataclass(frozen=True)
class AnnotationDefinition:
    id: str
    name: str
    description: str = ""


class AnnotationStore(Protocol):
    def list_definitions(self) -> List[AnnotationDefinition]: ...

    def create_definition(self, name: str, description: str) -> AnnotationDefinition: ...

    def write_values(self, identity: str, values: Mapping[str, str]) -> None: ...


class JamfAnnotationStore:
    """Computer extension attributes on Jamf Pro."""

    def __init__(self, client: JamfClient, *, page_size: int = 100,
                 logger: Optional[logging.LoggerAdapter] = None) -> None:
        self.client = client
        self.page_size = page_size
        self.log = logger or logging.getLogger("plansync.attributes")

    def list_definitions(self) -> List[AnnotationDefinition]:
        items = fetch_all(self.client, DEFINITIONS_ENDPOINT, self.page_size, logger=self.log)
        return [
            AnnotationDefinition(id=str(it.get("id")), name=str(it.get("name") or ""),
                                 description=str(it.get("description") or ""))
            for it in items
            if it.get("id") is not None
        ]

    def create_definition(self, name: str, description: str) -> AnnotationDefinition:
        payload = {
            "name": name,
            "description": description,
            "dataType": "STRING",
            "enabled": True,
            "inventoryDisplayType": "EXTENSION_ATTRIBUTES",
            "inputType": "TEXT",
        }
        resp = self.client.post_json(DEFINITIONS_ENDPOINT, payload)
        new_id = resp.get("id") if isinstance(resp, dict) else None
        if new_id is None:
            raise TransportError(status=0, url=DEFINITIONS_ENDPOINT,
                                 message=f"create returned no id for '{name}'")
        return AnnotationDefinition(id=str(new_id), name=name, description=description)

    def write_values(self, identity: str, values: Mapping[str, str]) -> None:
        payload = {
            "extensionAttributes": [
                {"definitionId": def_id, "values": [value]} for def_id, value in values.items()
            ]
        }
        self.client.patch_json(INVENTORY_DETAIL_ENDPOINT.format(id=identity), payload)


def resolve_definitions(
    store: AnnotationStore,
    *,
    allow_create: bool,
    stats: RunStatistics,
    logger: Optional[logging.LoggerAdapter] = None,
) -> Dict[str, AnnotationDefinition]:
    """Return name -> definition for the five plan attributes.

    Raises:
        MissingAnnotationDefinition: Some names are absent and creation is not allowed.
    """
    log = logger or logging.getLogger("plansync.attributes")
    existing = {d.name: d for d in store.list_definitions()}

    missing = [name for name in ANNOTATION_NAMES if name not in existing]
    if missing and not allow_create:
        log.error("Extension attributes missing and creation not allowed: %s", ", ".join(missing))
        raise MissingAnnotationDefinition(missing=missing)

    resolved: Dict[str, AnnotationDefinition] = {}
    for name in ANNOTATION_NAMES:
        if name in existing:
            resolved[name] = existing[name]
            log.debug("Extension attribute %s -> id=%s", name, existing[name].id)
            continue
        created = store.create_definition(name, DESCRIPTIONS[name])
        stats.definitions_created += 1
        log.info("Created extension attribute %s (id=%s)", name, created.id)
        resolved[name] = created
    return resolved


@dataclass(frozen=True)
class SyncResult:
    identity: str
    outcome: str
    error: Optional[AnnotationWriteError] = None


@dataclass
class SyncReport:
    results: List[SyncResult] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def updated(self) -> int:
        return self._count(UPDATED)

    @property
    def skipped(self) -> int:
        return self._count(SKIPPED)

    @property
    def errors(self) -> int:
        return self._count(ERROR)

    def failures(self) -> List[SyncResult]:
        return [r for r in self.results if r.outcome == ERROR]

    def apply_to(self, stats: RunStatistics) -> None:
        stats.devices_updated += self.updated
        stats.devices_skipped += self.skipped
        stats.errors += self.errors


class AttributeSynchronizer:
    """Push StatusRecords to the annotation store, one device at a time."""

    def __init__(
        self,
        store: AnnotationStore,
        definitions: Mapping[str, AnnotationDefinition],
        *,
        delay_sec: float = 0.2,
        logger: Optional[logging.LoggerAdapter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        missing = [n for n in ANNOTATION_NAMES if n not in definitions]
        if missing:
            raise MissingAnnotationDefinition(missing=missing)
        self.store = store
        self.definitions = dict(definitions)
        self.delay = max(0.0, float(delay_sec))
        self.log = logger or logging.getLogger("plansync.attributes")
        self._sleep = sleep

    def _values(self, status: StatusRecord) -> Dict[str, str]:
        return {self.definitions[name].id: value for name, value in status.as_annotations().items()}

    def sync_device(self, identity: str, status: StatusRecord) -> SyncResult:
        try:
            self.store.write_values(identity, self._values(status))
        except PlanSyncError as exc:
            err = exc if isinstance(exc, AnnotationWriteError) else \
                AnnotationWriteError(identity=identity, cause=str(exc))
            self.log.error("Failed to update extension attributes for computer %s: %s", identity, exc)
            return SyncResult(identity, ERROR, err)
        self.log.debug("Updated extension attributes for computer %s (%s)", identity, status.plan_status)
        return SyncResult(identity, UPDATED)

    def sync(self, registry: DeviceRegistry, statuses: Mapping[str, StatusRecord]) -> SyncReport:
        report = SyncReport()
        writes = 0
        for identity, record in registry.items():
            if not record.supports_annotations:
                report.results.append(SyncResult(identity, SKIPPED))
                self.log.debug("Skipping %s %s: extension attributes unsupported", record.kind.value, identity)
                continue
            if writes and self.delay:
                self._sleep(self.delay)
            report.results.append(self.sync_device(identity, statuses[identity]))
            writes += 1

        self.log.info(
            "Extension attribute sync: updated=%d skipped=%d errors=%d",
            report.updated, report.skipped, report.errors,
        )
        return report
