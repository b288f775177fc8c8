"""Scan report models — outputs of the vulnerability scan stage."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

SEVERITY_LEVELS: tuple[str, ...] = ("critical", "high", "medium", "low", "unknown")


class SeverityCounts(BaseModel):
    """Finding counts by severity level."""

    model_config = ConfigDict(frozen=True)

    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    unknown: int = 0

    @property
    def total(self) -> int:
        return self.critical + self.high + self.medium + self.low + self.unknown

    @property
    def blocking(self) -> int:
        """Findings that count against the strict-mode threshold."""
        return self.critical + self.high


class ScanReport(BaseModel):
    """Result of scanning one artifact in one build.

    Reports are keyed by build identifier: re-running the scan for the same
    build replaces the previous report rather than accumulating a new one.
    ``warning`` is set when the engine could not be invoked and the report
    is empty.
    """

    model_config = ConfigDict(frozen=True)

    build_id: int
    component: str
    image_ref: str
    counts: SeverityCounts = SeverityCounts()
    raw_report: str = ""  # content address of the engine's raw output
    engine: str = ""
    db_version: str = ""
    warning: bool = False
    warning_detail: str = ""
    scanned_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
