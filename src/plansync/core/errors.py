"""
Error taxonomy for PlanSync.

The runner decides fatal vs. continue per kind:
  - ConfigError                 -> fatal, before any network call
  - TransportError              -> fatal for fetches, per-device for writes
  - FeatureUnavailable          -> fallback (no plans, every device "No Plan")
  - MissingAnnotationDefinition -> fatal, before any write
  - AnnotationWriteError        -> per device, recorded and skipped
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


class PlanSyncError(Exception):
    """Base class for all PlanSync errors."""


class ConfigError(PlanSyncError):
    """Raised when runtime configuration cannot be resolved."""


@dataclass
class TransportError(PlanSyncError):
    """HTTP/transport error with context."""
    status: int
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"TransportError(status={self.status}, url={self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


@dataclass
class FeatureUnavailable(PlanSyncError):
    """The upstream capability is switched off (feature toggle false or absent)."""
    feature: str
    url: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"FeatureUnavailable(feature={self.feature})"
        if self.message:
            base += f": {self.message}"
        return base


@dataclass
class MissingAnnotationDefinition(PlanSyncError):
    """One or more extension attribute definitions are absent and may not be created."""
    missing: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return "Missing extension attribute definitions: " + ", ".join(self.missing)


@dataclass
class AnnotationWriteError(PlanSyncError):
    """Writing the status values of a single device failed."""
    identity: str
    cause: str = ""

    def __str__(self) -> str:
        return f"AnnotationWriteError(device={self.identity}): {self.cause}"
