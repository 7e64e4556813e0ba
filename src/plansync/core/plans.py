"""
Managed software update plans: parsing, the identity -> plan index and the
status reconciler that derives one StatusRecord per registered device.

Sentinels:
  "No Plan"   - the device has no plan at all
  "Unknown"   - a plan exists but the field is empty
  "No Errors" - the plan reports no error reasons
  "Not Set"   - the plan has no forced install date
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .registry import UNKNOWN, DeviceRegistry, normalize_identity
from .stats import RunStatistics

NO_PLAN = "No Plan"
NO_ERRORS = "No Errors"
NOT_SET = "Not Set"

# Extension attribute names, in write order.
PLAN_STATUS = "Plan_Status"
PLAN_ACTION = "Plan_Action"
PLAN_VERSION_TYPE = "Plan_Version_Type"
PLAN_ERROR_REASONS = "Plan_Error_Reasons"
PLAN_FORCE_INSTALL_DATE = "Plan_Force_Install_Date"

ANNOTATION_NAMES: Tuple[str, ...] = (
    PLAN_STATUS,
    PLAN_ACTION,
    PLAN_VERSION_TYPE,
    PLAN_ERROR_REASONS,
    PLAN_FORCE_INSTALL_DATE,
)


def _opt_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


@dataclass(frozen=True)
class UpdatePlan:
    plan_id: str
    device_identity: str
    device_type: Optional[str] = None
    update_action: Optional[str] = None
    version_type: Optional[str] = None
    specific_version: Optional[str] = None
    max_deferrals: Optional[int] = None
    status_state: Optional[str] = None
    error_reasons: Tuple[str, ...] = ()
    force_install: Optional[str] = None

    @classmethod
    def from_payload(cls, item: Mapping[str, Any]) -> Optional["UpdatePlan"]:
        """Parse a /api/v1/managed-software-updates/plans result (None without a device id)."""
        device = item.get("device") if isinstance(item.get("device"), dict) else {}
        raw_id = device.get("deviceId")
        if raw_id is None or not normalize_identity(raw_id):
            return None
        status = item.get("status") if isinstance(item.get("status"), dict) else {}
        reasons = status.get("errorReasons") or []
        if isinstance(reasons, str):
            reasons = [reasons]
        max_deferrals = item.get("maxDeferrals")
        try:
            max_deferrals = int(max_deferrals) if max_deferrals is not None else None
        except (TypeError, ValueError):
            max_deferrals = None
        return cls(
            plan_id=str(item.get("planUuid") or item.get("id") or ""),
            device_identity=normalize_identity(raw_id),
            device_type=_opt_text(device.get("objectType")),
            update_action=_opt_text(item.get("updateAction")),
            version_type=_opt_text(item.get("versionType")),
            specific_version=_opt_text(item.get("specificVersion")),
            max_deferrals=max_deferrals,
            status_state=_opt_text(status.get("state")),
            error_reasons=tuple(str(r) for r in reasons if str(r).strip()),
            force_install=_opt_text(item.get("forceInstallLocalDateTime")),
        )


class PlanIndex:
    """Device identity -> most recent UpdatePlan (last write wins, input order)."""

    def __init__(self, plans: Optional[Mapping[Any, UpdatePlan]] = None) -> None:
        self._plans: Dict[Any, UpdatePlan] = dict(plans or {})
        self.replaced = 0

    @classmethod
    def build(
        cls,
        raw_plans: Iterable[Mapping[str, Any]],
        *,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> "PlanIndex":
        log = logger or logging.getLogger("plansync.plans")
        index = cls()
        ignored = 0
        for item in raw_plans:
            plan = UpdatePlan.from_payload(item) if isinstance(item, Mapping) else None
            if plan is None:
                ignored += 1
                continue
            index.add(plan)
        if index.replaced:
            # no ordering guarantee upstream; the later entry is kept
            log.warning("%d device(s) had more than one plan; last one kept", index.replaced)
        log.info("Plan index built: devices=%d ignored=%d", len(index), ignored)
        return index

    def add(self, plan: UpdatePlan) -> None:
        key = normalize_identity(plan.device_identity)
        if key in self._plans:
            self.replaced += 1
        self._plans[key] = plan

    def __len__(self) -> int:
        return len(self._plans)

    def lookup(self, identity: Any) -> Optional[UpdatePlan]:
        """Find the plan for *identity*: direct key, string key, then string scan."""
        if identity in self._plans:
            return self._plans[identity]
        as_text = str(identity)
        if as_text in self._plans:
            return self._plans[as_text]
        for key, plan in self._plans.items():
            if str(key) == as_text:
                return plan
        return None


@dataclass(frozen=True)
class StatusRecord:
    plan_status: str
    plan_action: str
    version_type: str
    error_reasons: str
    force_install_date: str

    @classmethod
    def no_plan(cls) -> "StatusRecord":
        return cls(NO_PLAN, NO_PLAN, NO_PLAN, NO_PLAN, NO_PLAN)

    @classmethod
    def from_plan(cls, plan: UpdatePlan) -> "StatusRecord":
        return cls(
            plan_status=plan.status_state or UNKNOWN,
            plan_action=plan.update_action or UNKNOWN,
            version_type=plan.version_type or UNKNOWN,
            error_reasons=", ".join(plan.error_reasons) or NO_ERRORS,
            force_install_date=plan.force_install or NOT_SET,
        )

    def as_annotations(self) -> Dict[str, str]:
        return {
            PLAN_STATUS: self.plan_status,
            PLAN_ACTION: self.plan_action,
            PLAN_VERSION_TYPE: self.version_type,
            PLAN_ERROR_REASONS: self.error_reasons,
            PLAN_FORCE_INSTALL_DATE: self.force_install_date,
        }


def reconcile(
    registry: DeviceRegistry,
    index: PlanIndex,
    stats: RunStatistics,
    *,
    logger: Optional[logging.LoggerAdapter] = None,
) -> Dict[str, StatusRecord]:
    """Derive a StatusRecord for every device in *registry*."""
    log = logger or logging.getLogger("plansync.plans")
    statuses: Dict[str, StatusRecord] = {}
    for identity, record in registry.items():
        plan = index.lookup(identity)
        status = StatusRecord.from_plan(plan) if plan else StatusRecord.no_plan()
        statuses[identity] = status
        stats.devices_processed += 1
        stats.increment_status(status.plan_status)
        log.debug("Device %s (%s): %s", identity, record.display_name, status.plan_status)
    log.info("Reconciled %d device(s) against %d plan(s)", len(statuses), len(index))
    return statuses
