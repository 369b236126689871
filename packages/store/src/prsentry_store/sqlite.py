"""SQLiteJobStore: durable job queue in a local SQLite database.

Claims are conditional UPDATEs, so several worker processes can share one
database file and still never run two attempts of the same job at once.

Schema:
  jobs: one row per review job. Comments are stored as a JSON column to keep
        reads to a single row with no JOINs.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading

from prsentry_core.jobs import BaseJobStore
from prsentry_core.models import (
    DELIVERY_PENDING,
    DELIVERY_STARTED,
    FAILED,
    QUEUED,
    ReviewJob,
    comment_from_dict,
    comment_to_dict,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id          TEXT PRIMARY KEY,
    repo            TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    account_id      TEXT NOT NULL,
    plan_tier       TEXT NOT NULL,
    provider        TEXT NOT NULL,
    model           TEXT,
    token           TEXT,
    status          TEXT NOT NULL,
    attempts        INTEGER NOT NULL DEFAULT 0,
    created_at      REAL NOT NULL,
    updated_at      REAL NOT NULL,
    available_at    REAL NOT NULL DEFAULT 0,
    locked          INTEGER NOT NULL DEFAULT 0,
    last_error      TEXT,
    error_kind      TEXT,
    quota_period    TEXT,
    delivery        TEXT NOT NULL DEFAULT 'pending',
    cancel_reason   TEXT,
    summary         TEXT,
    comments_json   TEXT DEFAULT '[]',
    tokens_used     INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_jobs_ready   ON jobs (status, locked, available_at);
CREATE INDEX IF NOT EXISTS idx_jobs_account ON jobs (account_id, created_at);
"""

_COLUMNS = (
    "job_id",
    "repo",
    "pr_number",
    "account_id",
    "plan_tier",
    "provider",
    "model",
    "token",
    "status",
    "attempts",
    "created_at",
    "updated_at",
    "available_at",
    "locked",
    "last_error",
    "error_kind",
    "quota_period",
    "delivery",
    "cancel_reason",
    "summary",
    "comments_json",
    "tokens_used",
)


def connect(db_path: str) -> sqlite3.Connection:
    # Shared across worker threads; callers serialise access with a lock.
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


class SQLiteJobStore(BaseJobStore):
    """Stores review jobs in a SQLite database file.

    The path defaults to `.prsentry.db` in the current working directory.
    Configure via .prsentry.yml: `store: sqlite` and `store_path: ...`.
    """

    def __init__(self, db_path: str = ".prsentry.db"):
        self._lock = threading.Lock()
        self._conn = connect(db_path)
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def add(self, job: ReviewJob) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._lock, self._conn:
            try:
                self._conn.execute(
                    f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    self._to_row(job),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Job {job.job_id} already exists.")

    def get(self, job_id: str) -> ReviewJob | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM jobs WHERE job_id=?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def save(self, job: ReviewJob) -> None:
        values = self._to_row(job)
        assignments = ", ".join(
            "cancel_reason = COALESCE(?, cancel_reason)" if col == "cancel_reason" else f"{col} = ?"
            for col in _COLUMNS[1:]
        )
        with self._lock, self._conn:
            self._conn.execute(f"UPDATE jobs SET {assignments} WHERE job_id = ?", (*values[1:], job.job_id))

    def claim(self, now: float, job_id: str | None = None) -> ReviewJob | None:
        query = "SELECT job_id FROM jobs WHERE status=? AND locked=0 AND available_at<=?"
        params: tuple = (QUEUED, now)
        if job_id is not None:
            query += " AND job_id=?"
            params += (job_id,)
        query += " ORDER BY available_at, created_at LIMIT 1"

        with self._lock, self._conn:
            row = self._conn.execute(query, params).fetchone()
            if row is None:
                return None
            cur = self._conn.execute(
                "UPDATE jobs SET locked=1, attempts=attempts+1, updated_at=? "
                "WHERE job_id=? AND status=? AND locked=0",
                (now, row["job_id"], QUEUED),
            )
            if cur.rowcount != 1:
                # Another process claimed it between our SELECT and UPDATE.
                return None
            claimed = self._conn.execute("SELECT * FROM jobs WHERE job_id=?", (row["job_id"],)).fetchone()
        return self._row_to_job(claimed)

    def claim_delivery(self, job_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "UPDATE jobs SET delivery=? WHERE job_id=? AND delivery=?",
                (DELIVERY_STARTED, job_id, DELIVERY_PENDING),
            )
        return cur.rowcount == 1

    def release_delivery(self, job_id: str) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE jobs SET delivery=? WHERE job_id=? AND delivery=?",
                (DELIVERY_PENDING, job_id, DELIVERY_STARTED),
            )

    def cancel(self, job_id: str, reason: str, now: float) -> ReviewJob | None:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE jobs SET cancel_reason=? WHERE job_id=? AND status NOT IN ('completed', 'failed')",
                (reason, job_id),
            )
            self._conn.execute(
                "UPDATE jobs SET status=?, last_error=?, error_kind='Cancelled', updated_at=? "
                "WHERE job_id=? AND status=? AND locked=0",
                (FAILED, f"Cancelled: {reason}", now, job_id, QUEUED),
            )
            row = self._conn.execute("SELECT * FROM jobs WHERE job_id=?", (job_id,)).fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(
        self,
        account_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[ReviewJob]:
        query = "SELECT * FROM jobs WHERE 1=1"
        params: list = []
        if account_id is not None:
            query += " AND account_id=?"
            params.append(account_id)
        if status is not None:
            query += " AND status=?"
            params.append(status)
        query += " ORDER BY created_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_job(r) for r in rows]

    def next_available_at(self) -> float | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT MIN(available_at) AS next_at FROM jobs WHERE status=? AND locked=0", (QUEUED,)
            ).fetchone()
        return row["next_at"]

    def count_active(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM jobs WHERE status NOT IN ('completed', 'failed')"
            ).fetchone()
        return row["n"]

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _to_row(job: ReviewJob) -> tuple:
        return (
            job.job_id,
            job.repo,
            job.pr_number,
            job.account_id,
            job.plan_tier,
            job.provider,
            job.model,
            job.token,
            job.status,
            job.attempts,
            job.created_at,
            job.updated_at,
            job.available_at,
            int(job.locked),
            job.last_error,
            job.error_kind,
            job.quota_period,
            job.delivery,
            job.cancel_reason,
            job.summary,
            json.dumps([comment_to_dict(c) for c in job.comments]),
            job.tokens_used,
        )

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> ReviewJob:
        return ReviewJob(
            job_id=row["job_id"],
            repo=row["repo"],
            pr_number=row["pr_number"],
            account_id=row["account_id"],
            plan_tier=row["plan_tier"],
            provider=row["provider"],
            model=row["model"],
            token=row["token"],
            status=row["status"],
            attempts=row["attempts"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            available_at=row["available_at"],
            locked=bool(row["locked"]),
            last_error=row["last_error"],
            error_kind=row["error_kind"],
            quota_period=row["quota_period"],
            delivery=row["delivery"],
            cancel_reason=row["cancel_reason"],
            summary=row["summary"],
            comments=[comment_from_dict(c) for c in json.loads(row["comments_json"] or "[]")],
            tokens_used=row["tokens_used"],
        )
