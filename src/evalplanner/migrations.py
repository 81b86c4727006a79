from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("evalplanner.migrations")
    conn.execute("BEGIN IMMEDIATE")
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
            """
        )
        applied = {
            row[0]
            for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
        }
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_jobs_table(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_type TEXT NOT NULL,
            status TEXT NOT NULL,
            input_data TEXT NOT NULL,
            result_data TEXT NULL,
            error TEXT NULL,
            created_at TEXT NOT NULL,
            completed_at TEXT NULL,
            CONSTRAINT jobs_status_chk
                CHECK (status IN ('pending', 'processing', 'completed', 'failed'))
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_status_completed ON jobs(status, completed_at)"
    )


def _migration_jobs_claim_fields(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "jobs")
    if "started_at" not in columns:
        conn.execute("ALTER TABLE jobs ADD COLUMN started_at TEXT NULL")
    if "locked_by" not in columns:
        conn.execute("ALTER TABLE jobs ADD COLUMN locked_by TEXT NULL")


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_jobs_table", _migration_jobs_table),
        ("002_jobs_claim_fields", _migration_jobs_claim_fields),
    ]
