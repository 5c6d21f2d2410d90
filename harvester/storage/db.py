"""SQLite connection and schema shared by the job, recipe and cache stores."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dateutil import parser as dateparser

SCHEMA = """
CREATE TABLE IF NOT EXISTS crawl_jobs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    retry_count INTEGER NOT NULL DEFAULT 0,
    next_retry_at TEXT,
    recipes_found INTEGER NOT NULL DEFAULT 0,
    log TEXT,
    is_archived INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_crawl_jobs_claim ON crawl_jobs (is_archived, status, created_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_crawl_jobs_live_url ON crawl_jobs (url)
    WHERE status IN ('pending', 'processing', 'cooling_down') AND is_archived = 0;

CREATE TABLE IF NOT EXISTS recipes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    name TEXT,
    description TEXT,
    image TEXT,
    recipe_ingredients_json TEXT NOT NULL DEFAULT '[]',
    recipe_instructions_json TEXT NOT NULL DEFAULT '[]',
    prep_time TEXT,
    cook_time TEXT,
    total_time TEXT,
    recipe_yield TEXT,
    recipe_category TEXT,
    recipe_cuisine TEXT,
    nutrition_json TEXT,
    qa_status TEXT NOT NULL DEFAULT 'pending',
    quality_score INTEGER NOT NULL DEFAULT 0,
    audit_log_json TEXT NOT NULL DEFAULT '[]',
    last_audited_at TEXT,
    updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_recipes_audit ON recipes (qa_status, last_audited_at);

CREATE TABLE IF NOT EXISTS ingredient_cache (
    term TEXT NOT NULL,
    schema_version INTEGER NOT NULL,
    nutrition_json TEXT NOT NULL,
    source TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (term, schema_version)
);
"""


def connect(path: Path) -> sqlite3.Connection:
    """Open the shared database, creating the schema on first use."""
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(path), timeout=30.0)
    connection.row_factory = sqlite3.Row
    connection.execute("PRAGMA journal_mode=WAL")
    connection.executescript(SCHEMA)
    connection.commit()
    return connection


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = dateparser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
