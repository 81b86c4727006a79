from __future__ import annotations

import logging
from typing import Callable

from .utils import utc_now_iso

PgMigration = Callable[[object], None]

_MIGRATION_LOCK_KEY = 7_263_100_001


def apply_migrations_pg(conn) -> None:
    logger = logging.getLogger("evalplanner.migrations")
    with conn.transaction():
        # serialize concurrent bootstraps from several worker processes
        conn.execute("SELECT pg_advisory_xact_lock(?)", (_MIGRATION_LOCK_KEY,))
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
        for version, migration in _get_migrations_pg():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                """
                INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)
                ON CONFLICT DO NOTHING
                """,
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)


def _bootstrap_schema(conn) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id BIGSERIAL PRIMARY KEY,
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
    conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status_created ON jobs(status, created_at)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_jobs_status_completed ON jobs(status, completed_at)"
    )


def _migrate_claim_fields(conn) -> None:
    conn.execute("ALTER TABLE jobs ADD COLUMN IF NOT EXISTS started_at TEXT NULL")
    conn.execute("ALTER TABLE jobs ADD COLUMN IF NOT EXISTS locked_by TEXT NULL")


def _get_migrations_pg() -> list[tuple[str, PgMigration]]:
    return [
        ("pg_bootstrap_001", _bootstrap_schema),
        ("pg_claim_fields_002", _migrate_claim_fields),
    ]
