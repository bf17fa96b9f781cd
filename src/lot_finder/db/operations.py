"""Database operations."""

import json
import sqlite3
import uuid
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any

from ..models.listing import Finding, FindingCreate, ListingAnalysis
from ..models.search import SearchTask
from .schema import init_db


_connection: sqlite3.Connection | None = None


def get_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Get database connection, initializing if needed.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Database connection.
    """
    global _connection
    if _connection is None:
        _connection = init_db(db_path)
    return _connection


def close_db() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        _connection.close()
        _connection = None


def _ts(value: datetime | None) -> str | None:
    """Store timestamps as UTC ISO strings so they compare lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


# =============================================================================
# Search tasks
# =============================================================================

def save_search_task(task: SearchTask) -> str:
    """Save or update a search task.

    Args:
        task: The task to save. Its ``id`` is the primary key.

    Returns:
        The task ID.
    """
    conn = get_db()
    conn.execute(
        """
        INSERT INTO search_tasks (
            id, label, search_url, scan_interval_minutes, min_interval_minutes,
            max_interval_minutes, confidence_threshold, is_active, last_scanned_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            label = excluded.label,
            search_url = excluded.search_url,
            scan_interval_minutes = excluded.scan_interval_minutes,
            min_interval_minutes = excluded.min_interval_minutes,
            max_interval_minutes = excluded.max_interval_minutes,
            confidence_threshold = excluded.confidence_threshold,
            is_active = excluded.is_active,
            last_scanned_at = excluded.last_scanned_at
        """,
        (
            task.id,
            task.label,
            task.search_url,
            task.scan_interval_minutes,
            task.min_interval_minutes,
            task.max_interval_minutes,
            task.confidence_threshold,
            int(task.is_active),
            _ts(task.last_scanned_at),
        ),
    )
    conn.commit()
    return task.id


def create_search_task(label: str, search_url: str, **fields: Any) -> SearchTask:
    """Create a new search task with a generated ID."""
    task = SearchTask(id=str(uuid.uuid4()), label=label, search_url=search_url, **fields)
    save_search_task(task)
    return task


def get_search_task(task_id: str) -> SearchTask | None:
    """Get a search task by ID.

    Args:
        task_id: The task ID.

    Returns:
        The task, or None if not found.
    """
    conn = get_db()
    row = conn.execute("SELECT * FROM search_tasks WHERE id = ?", (task_id,)).fetchone()
    if row is None:
        return None
    return SearchTask.model_validate(dict(row))


def get_search_tasks(active_only: bool = False) -> list[SearchTask]:
    """Get search tasks in a stable order (creation order).

    Args:
        active_only: Only return tasks with ``is_active`` set.

    Returns:
        List of tasks.
    """
    conn = get_db()
    query = "SELECT * FROM search_tasks"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY created_at, rowid"
    return [SearchTask.model_validate(dict(row)) for row in conn.execute(query).fetchall()]


def get_due_search_tasks(now: datetime, min_interval_minutes: int) -> list[SearchTask]:
    """Active tasks that could be due: never scanned, or scanned at least
    ``min_interval_minutes`` ago. The randomized draw is left to the scheduler.
    """
    cutoff = _ts(now - timedelta(minutes=min_interval_minutes))
    conn = get_db()
    rows = conn.execute(
        """
        SELECT * FROM search_tasks
        WHERE is_active = 1 AND (last_scanned_at IS NULL OR last_scanned_at <= ?)
        ORDER BY created_at, rowid
        """,
        (cutoff,),
    ).fetchall()
    return [SearchTask.model_validate(dict(row)) for row in rows]


def mark_scanned(task_id: str, scanned_at: datetime) -> None:
    """Record a successful scan of a task."""
    conn = get_db()
    conn.execute(
        "UPDATE search_tasks SET last_scanned_at = ? WHERE id = ?",
        (_ts(scanned_at), task_id),
    )
    conn.commit()


def delete_search_task(task_id: str) -> bool:
    """Delete a search task. Returns True if a row was removed."""
    conn = get_db()
    cursor = conn.execute("DELETE FROM search_tasks WHERE id = ?", (task_id,))
    conn.commit()
    return cursor.rowcount > 0


# =============================================================================
# Analyzed listings (dedup)
# =============================================================================

def get_analyzed_listing(listing_id: str) -> dict[str, Any] | None:
    """Get the stored analysis for a listing, or None if never analyzed."""
    conn = get_db()
    row = conn.execute(
        "SELECT * FROM analyzed_listings WHERE listing_id = ?", (listing_id,)
    ).fetchone()
    if row is None:
        return None
    return dict(row)


def record_analyzed_listing(
    listing_id: str,
    analysis: ListingAnalysis,
    search_task_id: str | None = None,
) -> None:
    """Remember that a listing has been analyzed.

    The first analysis wins; recording the same listing again is a no-op.
    """
    conn = get_db()
    conn.execute(
        """
        INSERT OR IGNORE INTO analyzed_listings (listing_id, search_task_id, confidence, is_valuable, material)
        VALUES (?, ?, ?, ?, ?)
        """,
        (listing_id, search_task_id, analysis.confidence, int(analysis.is_valuable), analysis.material.value),
    )
    conn.commit()


# =============================================================================
# Findings
# =============================================================================

def _row_to_finding(row: sqlite3.Row) -> Finding:
    data = dict(row)
    data["reasons"] = json.loads(data["reasons"]) if data.get("reasons") else []
    data["alert_sent"] = bool(data["alert_sent"])
    return Finding.model_validate(data)


def save_finding(finding: FindingCreate, found_at: datetime | None = None) -> str:
    """Save a new finding.

    Returns:
        The finding ID.
    """
    conn = get_db()
    finding_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO findings (
            id, listing_id, listing_url, listing_title, price, confidence, material,
            reasons, advice, search_task_id, found_at, expires_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            finding_id,
            finding.listing_id,
            finding.listing_url,
            finding.listing_title,
            finding.price,
            finding.confidence,
            finding.material.value,
            json.dumps(finding.reasons),
            finding.advice.value,
            finding.search_task_id,
            _ts(found_at or datetime.now(UTC)),
            _ts(finding.expires_at),
        ),
    )
    conn.commit()
    return finding_id


def mark_finding_alerted(finding_id: str) -> None:
    conn = get_db()
    conn.execute("UPDATE findings SET alert_sent = 1 WHERE id = ?", (finding_id,))
    conn.commit()


def get_findings(now: datetime | None = None, include_expired: bool = False) -> list[Finding]:
    """Get findings, newest first.

    Args:
        now: Reference time for expiry. Defaults to the current time.
        include_expired: Also return findings past their expiry.
    """
    conn = get_db()
    if include_expired:
        rows = conn.execute("SELECT * FROM findings ORDER BY found_at DESC").fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM findings WHERE expires_at > ? ORDER BY found_at DESC",
            (_ts(now or datetime.now(UTC)),),
        ).fetchall()
    return [_row_to_finding(row) for row in rows]


def delete_expired_findings(now: datetime | None = None) -> int:
    """Delete findings past their expiry. Returns the number removed."""
    conn = get_db()
    cursor = conn.execute(
        "DELETE FROM findings WHERE expires_at <= ?",
        (_ts(now or datetime.now(UTC)),),
    )
    conn.commit()
    return cursor.rowcount
