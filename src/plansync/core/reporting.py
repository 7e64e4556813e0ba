"""
Reporting helpers: the tabular device/plan export (CSV or XLSX through
pandas) and the human-readable session summary.
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from .plans import StatusRecord
from .registry import DeviceRegistry
from .stats import RunStatistics

log = logging.getLogger(__name__)

COLUMNS: List[str] = [
    "Device ID",
    "Device Type",
    "Name",
    "Serial Number",
    "Model",
    "OS Version",
    "Last Contact",
    "Username",
    "Full Name",
    "Email",
    "Position",
    "Plan Status",
    "Plan Action",
    "Version Type",
    "Error Reasons",
    "Force Install Date",
]


def build_rows(registry: DeviceRegistry, statuses: Mapping[str, StatusRecord]) -> List[Dict[str, Any]]:
    """One flat row per device, in registry order."""
    rows: List[Dict[str, Any]] = []
    for identity, rec in registry.items():
        st = statuses.get(identity) or StatusRecord.no_plan()
        rows.append({
            "Device ID": rec.identity,
            "Device Type": rec.kind.value,
            "Name": rec.display_name,
            "Serial Number": rec.serial_number,
            "Model": rec.model,
            "OS Version": rec.os_version,
            "Last Contact": rec.last_contact,
            "Username": rec.username,
            "Full Name": rec.real_name,
            "Email": rec.email,
            "Position": rec.position,
            "Plan Status": st.plan_status,
            "Plan Action": st.plan_action,
            "Version Type": st.version_type,
            "Error Reasons": st.error_reasons,
            "Force Install Date": st.force_install_date,
        })
    return rows


def report_path(directory: str, fmt: str = "csv", now: Optional[datetime] = None) -> Path:
    ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return Path(directory) / f"plan_status_{ts}.{fmt.lower()}"


def export_rows(rows: List[Dict[str, Any]], path: Path, fmt: str = "csv") -> Path:
    """Write *rows* to *path* as CSV or XLSX; parent directories are created."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(rows, columns=COLUMNS)
    fmt = fmt.lower()
    if fmt == "xlsx":
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="PlanStatus", index=False)
    elif fmt == "csv":
        df.to_csv(path, index=False, encoding="utf-8")
    else:
        raise ValueError(f"Unsupported export format: {fmt}")
    log.info("Exported %d row(s) to %s", len(df), path)
    return path


def _table(headers: List[str], rows: List[List[str]]) -> List[str]:
    widths = [len(h) for h in headers]
    for r in rows:
        widths = [max(w, len(c)) for w, c in zip(widths, r)]
    out = ["| " + " | ".join(h.ljust(w) for h, w in zip(headers, widths)) + " |"]
    out.append("| " + " | ".join("-" * w for w in widths) + " |")
    for r in rows:
        out.append("| " + " | ".join(c.ljust(w) for c, w in zip(r, widths)) + " |")
    return out


def format_summary(stats: RunStatistics, *, run_id: str = "", outcome: str = "") -> str:
    """Render the end-of-run summary (counters + status histogram)."""
    lines = [f"PlanSync summary (run={run_id or '-'}{', ' + outcome if outcome else ''})"]
    lines += _table(
        ["processed", "updated", "skipped", "created", "errors"],
        [[
            str(stats.devices_processed),
            str(stats.devices_updated),
            str(stats.devices_skipped),
            str(stats.definitions_created),
            str(stats.errors),
        ]],
    )
    hist = stats.histogram_items()
    if hist:
        lines.append("")
        lines += _table(["plan status", "devices"], [[s, str(n)] for s, n in hist])
    return "\n".join(lines)
