"""
Command-line interface for PlanSync.

Usage (examples):
  - Report only (CSV of every device and its update plan status):
      python -m plansync.cli run --base-url https://example.jamfcloud.com \
        --client-id ID --client-secret SECRET

  - Report + write the five Plan_* extension attributes, creating them if needed:
      python -m plansync.cli run --write-attributes --create-definitions

Connection settings can also come from plansync.yml, a .env file
(JAMF_URL, JAMF_CLIENT_ID, JAMF_CLIENT_SECRET) or PSYNC_* variables.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .core.config import DEFAULT_FILES, load_config
from .core.errors import ConfigError
from .core.jamf_client import JamfClient
from .core.logging_setup import build_logger, close_logger
from .core.reporting import format_summary
from .core.runner import EXIT_CONFIG_ERROR, EXIT_GENERIC_ERROR, run
from .core.stats import RunContext


def _flag(value: bool) -> Optional[bool]:
    # store_true flags left unset must not override file/env values
    return True if value else None


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="plansync", description="Jamf Pro update plan status sync")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("run", help="Reconcile devices with update plans, export and sync")
    r.add_argument("--config", default=None, help="YAML config file (default: search standard locations)")
    r.add_argument("--dry-run", action="store_true", help="Never write extension attributes")

    # Jamf / HTTP
    r.add_argument("--base-url", default=None, help="Jamf Pro base URL")
    r.add_argument("--client-id", default=None, help="API client id")
    r.add_argument("--client-secret", default=None, help="API client secret")
    r.add_argument("--no-verify-tls", action="store_true", help="Disable TLS verification")
    r.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    r.add_argument("--page-size", type=int, default=None, help="Page size for list endpoints")

    # Inventory / sync / export
    r.add_argument("--no-mobile-devices", action="store_true", help="Only fetch computers")
    r.add_argument("--write-attributes", action="store_true", help="Write Plan_* extension attributes")
    r.add_argument("--create-definitions", action="store_true",
                   help="Create missing Plan_* extension attribute definitions")
    r.add_argument("--delay-sec", type=float, default=None, help="Delay between attribute writes")
    r.add_argument("--no-export", action="store_true", help="Do not write the report file")
    r.add_argument("--export-dir", default=None, help="Report directory")
    r.add_argument("--export-format", default=None, choices=["csv", "xlsx"], help="Report format")

    # Logging
    r.add_argument("--logs-dir", default=None, help="Logs base directory")
    r.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    r.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "app": {"dry_run": _flag(args.dry_run)},
        "jamf": {
            "base_url": args.base_url,
            "client_id": args.client_id,
            "client_secret": args.client_secret,
            "verify_tls": False if args.no_verify_tls else None,
            "timeout_sec": args.timeout_sec,
            "page_size": args.page_size,
        },
        "inventory": {"include_mobile_devices": False if args.no_mobile_devices else None},
        "sync": {
            "write_attributes": _flag(args.write_attributes),
            "create_definitions": _flag(args.create_definitions),
            "delay_sec": args.delay_sec,
        },
        "export": {
            "enabled": False if args.no_export else None,
            "directory": args.export_dir,
            "format": args.export_format,
        },
        "logging": {
            "base_dir": args.logs_dir,
            "console_level": args.console_level,
            "file_level": args.file_level,
        },
    }


def _run_cmd(args: argparse.Namespace) -> int:
    if args.config and not Path(args.config).is_file():
        print(f"Configuration error: config file not found: {args.config}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    files = (args.config,) if args.config else DEFAULT_FILES
    try:
        cfg = load_config(_overrides(args), files=files)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    logger = build_logger(
        run_id=cfg.run_id,
        action="run",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
    )
    logger.info(
        "Starting plansync run (dry_run=%s write_attributes=%s export=%s)",
        cfg.app.dry_run, cfg.sync.write_attributes, cfg.export.enabled,
    )

    client = JamfClient(
        cfg.jamf.base_url,
        cfg.jamf.client_id,
        cfg.jamf.client_secret,
        verify_tls=cfg.jamf.verify_tls,
        timeout_sec=cfg.jamf.timeout_sec,
        logger=logger,
    )
    ctx = RunContext(config=cfg, logger=logger, client=client)
    try:
        outcome = run(ctx)
    except Exception:
        logger.exception("Unexpected error, run aborted")
        print(format_summary(ctx.stats, run_id=ctx.run_id, outcome=f"exit={EXIT_GENERIC_ERROR}"))
        return EXIT_GENERIC_ERROR
    finally:
        close_logger(logger)

    print(outcome.summary)
    if outcome.report_path:
        print(f"Report: {outcome.report_path}")
    return outcome.exit_code


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "run":
        return _run_cmd(args)

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
