"""
Batch orchestrator: fetch -> registry / plan index -> reconcile ->
export / synchronize -> summary.

Fatal vs. continue is decided here, per error kind:
  - TransportError while fetching         -> abort (EXIT_NETWORK_ERROR)
  - FeatureUnavailable on plans           -> continue with no plans
  - any failure resolving definitions     -> abort before any write
  - MissingAnnotationDefinition           -> abort before any write
  - per-device AnnotationWriteError       -> continue (EXIT_PARTIAL)
The summary is emitted in every case.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from .attributes import AttributeSynchronizer, JamfAnnotationStore, AnnotationStore, resolve_definitions
from .errors import FeatureUnavailable, MissingAnnotationDefinition, TransportError
from .fetcher import fetch_all
from .plans import PlanIndex, reconcile
from .registry import build_registry
from .reporting import build_rows, export_rows, format_summary, report_path
from .stats import RunContext, RunStatistics

EXIT_OK = 0
EXIT_GENERIC_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_PARTIAL = 3
EXIT_NETWORK_ERROR = 4
EXIT_MISSING_DEFINITION = 5

COMPUTERS_ENDPOINT = "/api/v1/computers-inventory"
COMPUTER_SECTIONS = ("GENERAL", "HARDWARE", "OPERATING_SYSTEM", "USER_AND_LOCATION")
MOBILE_ENDPOINT = "/api/v2/mobile-devices/detail"
MOBILE_SECTIONS = ("GENERAL", "HARDWARE", "USER_AND_LOCATION")
PLANS_ENDPOINT = "/api/v1/managed-software-updates/plans"
PLANS_TOGGLE_ENDPOINT = "/api/v1/managed-software-updates/plans/feature-toggle"


@dataclass
class RunOutcome:
    exit_code: int
    stats: RunStatistics
    report_path: Optional[Path] = None
    summary: str = ""


def _sections(names) -> List[tuple]:
    return [("section", s) for s in names]


def fetch_devices(ctx: RunContext) -> Dict[str, List[Dict[str, Any]]]:
    cfg = ctx.config
    computers = fetch_all(
        ctx.client, COMPUTERS_ENDPOINT, cfg.jamf.page_size,
        params=_sections(COMPUTER_SECTIONS), logger=ctx.logger,
    )
    mobiles: List[Dict[str, Any]] = []
    if cfg.inventory.include_mobile_devices:
        mobiles = fetch_all(
            ctx.client, MOBILE_ENDPOINT, cfg.jamf.page_size,
            params=_sections(MOBILE_SECTIONS), logger=ctx.logger,
        )
    return {"full": computers, "limited": mobiles}


def fetch_plans(ctx: RunContext) -> List[Dict[str, Any]]:
    """Read all update plans; FeatureUnavailable when the feature is switched off."""
    try:
        toggle = ctx.client.get_json(PLANS_TOGGLE_ENDPOINT)
    except TransportError as exc:
        if exc.status == 404:
            # servers predating managed software updates have no toggle endpoint
            raise FeatureUnavailable(feature="managed-software-updates",
                                     url=PLANS_TOGGLE_ENDPOINT, message="endpoint not found") from exc
        raise
    if isinstance(toggle, dict) and toggle.get("toggle") is False:
        raise FeatureUnavailable(feature="managed-software-updates",
                                 url=PLANS_TOGGLE_ENDPOINT, message="feature toggle is off")
    return fetch_all(ctx.client, PLANS_ENDPOINT, ctx.config.jamf.page_size, logger=ctx.logger)


def run(ctx: RunContext, *, store: Optional[AnnotationStore] = None) -> RunOutcome:
    log = ctx.logger
    cfg = ctx.config
    stats = ctx.stats
    outcome = RunOutcome(exit_code=EXIT_OK, stats=stats)

    try:
        try:
            devices = fetch_devices(ctx)
        except TransportError as exc:
            log.error("Device inventory fetch failed, aborting run: %s", exc)
            outcome.exit_code = EXIT_NETWORK_ERROR
            return outcome

        registry = build_registry(devices["full"], devices["limited"], logger=log)

        try:
            raw_plans = fetch_plans(ctx)
        except FeatureUnavailable as exc:
            log.warning("Managed software update plans unavailable (%s); every device gets 'No Plan'", exc)
            raw_plans = []
        except TransportError as exc:
            log.error("Update plan fetch failed, aborting run: %s", exc)
            outcome.exit_code = EXIT_NETWORK_ERROR
            return outcome

        index = PlanIndex.build(raw_plans, logger=log)
        statuses = reconcile(registry, index, stats, logger=log)

        if cfg.export.enabled:
            path = report_path(cfg.export.directory, cfg.export.format)
            outcome.report_path = export_rows(build_rows(registry, statuses), path, cfg.export.format)
            log.info("Report written to %s", outcome.report_path)

        if not cfg.sync.write_attributes:
            log.info("Extension attribute writes disabled")
            return outcome
        if cfg.app.dry_run:
            pending = sum(1 for r in registry.records() if r.supports_annotations)
            log.info("Dry run: %d computer(s) would be updated, no writes issued", pending)
            return outcome

        store = store or JamfAnnotationStore(ctx.client, page_size=cfg.jamf.page_size, logger=log)
        try:
            definitions = resolve_definitions(
                store, allow_create=cfg.sync.create_definitions, stats=stats, logger=log,
            )
        except MissingAnnotationDefinition as exc:
            log.error("%s; rerun with creation enabled or create them in Jamf Pro", exc)
            outcome.exit_code = EXIT_MISSING_DEFINITION
            return outcome
        except (TransportError, FeatureUnavailable) as exc:
            log.error("Extension attribute lookup failed, aborting sync: %s", exc)
            outcome.exit_code = EXIT_NETWORK_ERROR
            return outcome

        synchronizer = AttributeSynchronizer(store, definitions, delay_sec=cfg.sync.delay_sec, logger=log)
        report = synchronizer.sync(registry, statuses)
        report.apply_to(stats)
        if report.errors:
            outcome.exit_code = EXIT_PARTIAL
        return outcome
    finally:
        stats.mark_complete()
        label = "ok" if outcome.exit_code == EXIT_OK else f"exit={outcome.exit_code}"
        outcome.summary = format_summary(stats, run_id=ctx.run_id, outcome=label)
        for line in outcome.summary.splitlines():
            log.info(line)
