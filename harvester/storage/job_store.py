"""Job Store: persistence and atomic claiming for crawl jobs."""
from __future__ import annotations

import functools
import sqlite3
from datetime import datetime
from typing import List, Optional

from harvester.errors import StoreError
from harvester.orchestrator.jobs import LIVE_STATUSES, CrawlJob, JobStatus, utcnow
from harvester.storage.db import from_db_time, to_db_time

_LIVE_SQL = "(" + ", ".join(f"'{status.value}'" for status in LIVE_STATUSES) + ")"


def _store_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except sqlite3.Error as exc:
            raise StoreError(f"job store {method.__name__} failed: {exc}") from exc

    return wrapper


def _row_to_job(row: sqlite3.Row) -> CrawlJob:
    return CrawlJob(
        id=row["id"],
        url=row["url"],
        status=JobStatus(row["status"]),
        retry_count=row["retry_count"],
        next_retry_at=from_db_time(row["next_retry_at"]),
        recipes_found=row["recipes_found"],
        log=row["log"],
        is_archived=bool(row["is_archived"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class JobStore:
    """SQLite-backed store for ``crawl_jobs`` rows."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    @_store_errors
    def insert(
        self,
        url: str,
        *,
        status: JobStatus = JobStatus.PENDING,
        retry_count: int = 0,
        log: Optional[str] = None,
    ) -> CrawlJob:
        now = to_db_time(utcnow())
        cursor = self._conn.execute(
            "INSERT INTO crawl_jobs (url, status, retry_count, log, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (url, status.value, retry_count, log, now, now),
        )
        self._conn.commit()
        return self.get(cursor.lastrowid)

    @_store_errors
    def get(self, job_id: int) -> Optional[CrawlJob]:
        row = self._conn.execute("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    @_store_errors
    def next_claimable(self, now: Optional[datetime] = None) -> Optional[CrawlJob]:
        """Return the oldest pending job or cooling-down job whose retry time passed."""
        row = self._conn.execute(
            "SELECT * FROM crawl_jobs"
            " WHERE is_archived = 0"
            " AND (status = 'pending' OR (status = 'cooling_down' AND next_retry_at <= ?))"
            " ORDER BY created_at ASC, id ASC LIMIT 1",
            (to_db_time(now or utcnow()),),
        ).fetchone()
        return _row_to_job(row) if row else None

    @_store_errors
    def claim(self, job: CrawlJob, now: Optional[datetime] = None) -> bool:
        """Atomically move ``job`` to processing.

        The UPDATE is guarded on the status observed at selection time, so
        when two workers race for the same row only one sees a changed row.
        """
        increment = 1 if job.status == JobStatus.COOLING_DOWN else 0
        cursor = self._conn.execute(
            "UPDATE crawl_jobs"
            " SET status = 'processing', next_retry_at = NULL,"
            " retry_count = retry_count + ?, updated_at = ?"
            " WHERE id = ? AND status = ? AND is_archived = 0",
            (increment, to_db_time(now or utcnow()), job.id, job.status.value),
        )
        self._conn.commit()
        return cursor.rowcount == 1

    @_store_errors
    def update_status(
        self,
        job_id: int,
        status: JobStatus,
        *,
        recipes_found: Optional[int] = None,
        log: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
    ) -> None:
        assignments = ["status = ?", "updated_at = ?"]
        params: List[object] = [status.value, to_db_time(utcnow())]
        if recipes_found is not None:
            assignments.append("recipes_found = ?")
            params.append(recipes_found)
        if log:
            assignments.append("log = ?")
            params.append(log)
        if next_retry_at is not None:
            assignments.append("next_retry_at = ?")
            params.append(to_db_time(next_retry_at))
        params.append(job_id)
        self._conn.execute(f"UPDATE crawl_jobs SET {', '.join(assignments)} WHERE id = ?", params)
        self._conn.commit()

    @_store_errors
    def update_progress(self, job_id: int, recipes_found: int) -> None:
        self._conn.execute(
            "UPDATE crawl_jobs SET recipes_found = MAX(recipes_found, ?), updated_at = ? WHERE id = ?",
            (recipes_found, to_db_time(utcnow()), job_id),
        )
        self._conn.commit()

    @_store_errors
    def find_live(self, url: str) -> Optional[CrawlJob]:
        row = self._conn.execute(
            f"SELECT * FROM crawl_jobs WHERE url = ? AND is_archived = 0 AND status IN {_LIVE_SQL}"
            " ORDER BY created_at DESC LIMIT 1",
            (url,),
        ).fetchone()
        return _row_to_job(row) if row else None

    @_store_errors
    def latest(self, url: str, status: Optional[JobStatus] = None) -> Optional[CrawlJob]:
        """Return the most recently updated job for ``url``, optionally by status."""
        sql = "SELECT * FROM crawl_jobs WHERE url = ?"
        params: List[object] = [url]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY updated_at DESC, id DESC LIMIT 1"
        row = self._conn.execute(sql, params).fetchone()
        return _row_to_job(row) if row else None

    @_store_errors
    def list_jobs(self, *, archived: bool = False, limit: int = 20) -> List[CrawlJob]:
        order = "updated_at" if archived else "created_at"
        rows = self._conn.execute(
            f"SELECT * FROM crawl_jobs WHERE is_archived = ? ORDER BY {order} DESC LIMIT ?",
            (int(archived), limit),
        ).fetchall()
        return [_row_to_job(row) for row in rows]

    @_store_errors
    def archive(self, job_id: Optional[int] = None) -> int:
        """Archive one job, or every unarchived job when ``job_id`` is None."""
        sql = (
            "UPDATE crawl_jobs SET is_archived = 1, status = 'failed',"
            " log = 'Archived/Stopped by user', updated_at = ? WHERE is_archived = 0"
        )
        params: List[object] = [to_db_time(utcnow())]
        if job_id is not None:
            sql += " AND id = ?"
            params.append(job_id)
        cursor = self._conn.execute(sql, params)
        self._conn.commit()
        return cursor.rowcount
