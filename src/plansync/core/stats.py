"""
Per-run state: counters for the session summary and the RunContext that
is handed to every component instead of module-level globals.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Tuple

if TYPE_CHECKING:
    from .config import AppConfig
    from .jamf_client import JamfClient


@dataclass
class RunStatistics:
    devices_processed: int = 0
    devices_updated: int = 0
    devices_skipped: int = 0
    definitions_created: int = 0
    errors: int = 0
    status_histogram: Dict[str, int] = field(default_factory=dict)
    completed: bool = False

    def __setattr__(self, name: str, value: object) -> None:
        if getattr(self, "completed", False) and name != "completed":
            raise RuntimeError("RunStatistics is read-only once the run is complete")
        super().__setattr__(name, value)

    def increment_status(self, status: str) -> None:
        if self.completed:
            raise RuntimeError("RunStatistics is read-only once the run is complete")
        self.status_histogram[status] = self.status_histogram.get(status, 0) + 1

    def mark_complete(self) -> None:
        self.completed = True

    def histogram_items(self) -> List[Tuple[str, int]]:
        """Histogram sorted by count (desc) then status name."""
        return sorted(self.status_histogram.items(), key=lambda kv: (-kv[1], kv[0]))


@dataclass
class RunContext:
    """Everything a run needs; built at start, discarded at the end."""
    config: "AppConfig"
    logger: logging.LoggerAdapter
    client: "JamfClient"
    stats: RunStatistics = field(default_factory=RunStatistics)

    @property
    def run_id(self) -> str:
        return self.config.run_id
