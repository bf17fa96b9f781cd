"""Database module."""

from .schema import init_db
from .operations import (
    get_db,
    close_db,
    save_search_task,
    create_search_task,
    get_search_task,
    get_search_tasks,
    get_due_search_tasks,
    mark_scanned,
    delete_search_task,
    get_analyzed_listing,
    record_analyzed_listing,
    save_finding,
    mark_finding_alerted,
    get_findings,
    delete_expired_findings,
)
from .store import DatabaseStore, ScanStore

__all__ = [
    "init_db",
    "get_db",
    "close_db",
    "save_search_task",
    "create_search_task",
    "get_search_task",
    "get_search_tasks",
    "get_due_search_tasks",
    "mark_scanned",
    "delete_search_task",
    "get_analyzed_listing",
    "record_analyzed_listing",
    "save_finding",
    "mark_finding_alerted",
    "get_findings",
    "delete_expired_findings",
    "DatabaseStore",
    "ScanStore",
]
