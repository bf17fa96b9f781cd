"""Record store used by the scanner and scheduler."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol

from ..errors import StorageError
from ..models.listing import FindingCreate, ListingAnalysis
from ..models.search import SearchTask
from . import operations as ops

logger = logging.getLogger(__name__)


class ScanStore(Protocol):
    """Persistence the scan core depends on."""

    def list_active(self) -> list[SearchTask]: ...

    def mark_scanned(self, task_id: str, scanned_at: datetime) -> None: ...

    def is_seen(self, listing_id: str) -> bool: ...

    def record_seen(self, listing_id: str, analysis: ListingAnalysis, search_task_id: str | None) -> None: ...

    def save_finding(self, finding: FindingCreate, found_at: datetime | None = None) -> str: ...

    def mark_alerted(self, finding_id: str) -> None: ...

    def delete_expired_findings(self, now: datetime) -> int: ...


class DatabaseStore:
    """ScanStore backed by the sqlite operations module.

    Every sqlite error surfaces as StorageError.
    """

    def __init__(self, db_path: Path | None = None):
        self._wrap(ops.get_db, db_path)

    @staticmethod
    def _wrap(func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except sqlite3.Error as e:
            raise StorageError(f"{func.__name__} failed: {e}") from e

    def list_active(self) -> list[SearchTask]:
        return self._wrap(ops.get_search_tasks, active_only=True)

    def mark_scanned(self, task_id: str, scanned_at: datetime) -> None:
        self._wrap(ops.mark_scanned, task_id, scanned_at)

    def is_seen(self, listing_id: str) -> bool:
        return self._wrap(ops.get_analyzed_listing, listing_id) is not None

    def record_seen(self, listing_id: str, analysis: ListingAnalysis, search_task_id: str | None) -> None:
        self._wrap(ops.record_analyzed_listing, listing_id, analysis, search_task_id)

    def save_finding(self, finding: FindingCreate, found_at: datetime | None = None) -> str:
        return self._wrap(ops.save_finding, finding, found_at)

    def mark_alerted(self, finding_id: str) -> None:
        self._wrap(ops.mark_finding_alerted, finding_id)

    def delete_expired_findings(self, now: datetime) -> int:
        removed = self._wrap(ops.delete_expired_findings, now)
        if removed:
            logger.info(f"Deleted {removed} expired findings")
        return removed
