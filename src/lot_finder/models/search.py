"""Search task and scan cycle models."""

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, Field

from ..errors import ScrapeError


class SearchTask(BaseModel):
    """A recurring search to scan."""

    id: str = Field(..., description="Opaque task ID")
    search_url: str = Field(..., description="Search-results URL on the marketplace")
    label: str = Field(..., description="Human label for logs")
    scan_interval_minutes: int | None = Field(
        None,
        description="Desired spacing; raises the floor of the random interval",
    )
    min_interval_minutes: int | None = Field(None, description="Per-task override of the global lower bound")
    max_interval_minutes: int | None = Field(None, description="Per-task override of the global upper bound")
    confidence_threshold: int = Field(70, ge=0, le=100)
    last_scanned_at: datetime | None = None
    is_active: bool = True

    def interval_bounds(self, default_min: int, default_max: int) -> tuple[int, int]:
        """Resolve the [min, max] minute bounds used for the due-ness draw."""
        upper = self.max_interval_minutes if self.max_interval_minutes is not None else default_max
        lower = self.min_interval_minutes if self.min_interval_minutes is not None else default_min
        if self.scan_interval_minutes is not None:
            lower = max(lower, self.scan_interval_minutes)
        return min(lower, upper), upper

    def minutes_since_scan(self, now: datetime) -> float:
        """Minutes elapsed since the last successful scan; infinite if never scanned."""
        if self.last_scanned_at is None:
            return float("inf")
        return (now - self.last_scanned_at).total_seconds() / 60


@dataclass
class ScanCycleRecord:
    """What happened during one scheduler cycle."""

    started_at: datetime
    considered: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    new_results: int = 0
    vetoed: bool = False  # health check aborted the cycle
    dropped: bool = False  # another cycle was already running
    errors: list[ScrapeError] = field(default_factory=list)
    finished_at: datetime | None = None

    def __repr__(self) -> str:
        if self.dropped:
            return "ScanCycleRecord(dropped)"
        if self.vetoed:
            return "ScanCycleRecord(vetoed by health check)"
        return (
            f"ScanCycleRecord({self.considered} considered, {self.processed} processed, "
            f"{self.skipped} skipped, {self.failed} failed, {self.new_results} new)"
        )
