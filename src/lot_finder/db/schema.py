"""Database schema definitions."""

import sqlite3
from pathlib import Path

from ..config import config


SCHEMA = """
-- search_tasks table (recurring searches owned by the scheduler)
CREATE TABLE IF NOT EXISTS search_tasks (
    id TEXT PRIMARY KEY,
    label TEXT NOT NULL,
    search_url TEXT NOT NULL,
    scan_interval_minutes INTEGER,
    min_interval_minutes INTEGER,
    max_interval_minutes INTEGER,
    confidence_threshold INTEGER NOT NULL DEFAULT 70,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_scanned_at TIMESTAMP,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- analyzed_listings table (dedup: a listing is never analyzed twice)
CREATE TABLE IF NOT EXISTS analyzed_listings (
    listing_id TEXT PRIMARY KEY,
    search_task_id TEXT,
    confidence INTEGER NOT NULL,
    is_valuable INTEGER NOT NULL,
    material TEXT,
    analyzed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

-- findings table (qualifying listings, expired after a TTL)
CREATE TABLE IF NOT EXISTS findings (
    id TEXT PRIMARY KEY,
    listing_id TEXT NOT NULL,
    listing_url TEXT NOT NULL,
    listing_title TEXT NOT NULL,
    price TEXT,
    confidence INTEGER NOT NULL,
    material TEXT,
    reasons JSON,
    advice TEXT,
    search_task_id TEXT,
    alert_sent INTEGER NOT NULL DEFAULT 0,
    found_at TIMESTAMP NOT NULL,
    expires_at TIMESTAMP NOT NULL
);

-- Create indexes for common queries
CREATE INDEX IF NOT EXISTS idx_tasks_active ON search_tasks(is_active);
CREATE INDEX IF NOT EXISTS idx_findings_expires ON findings(expires_at);
CREATE INDEX IF NOT EXISTS idx_findings_task ON findings(search_task_id);
"""


def init_db(db_path: Path | None = None) -> sqlite3.Connection:
    """Initialize the database with schema.

    Args:
        db_path: Optional path to database. Uses config default if not provided.

    Returns:
        Connection to the initialized database.
    """
    if db_path is None:
        db_path = config.db_path
        config.ensure_dirs()
    elif str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    conn.commit()
    return conn
