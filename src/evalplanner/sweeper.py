from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from .storage import delete_terminal_older_than, init_db
from .utils import log_event

logger = logging.getLogger("evalplanner.sweeper")


def sweep_expired_jobs(
    conn: Any,
    retention_hours: float = 6,
    now: datetime | None = None,
) -> int:
    current = now or datetime.now(tz=timezone.utc)
    cutoff = current - timedelta(hours=retention_hours)
    return delete_terminal_older_than(conn, cutoff)


def run_sweep(
    conn: Any | None = None,
    retention_hours: float = 6,
    now: datetime | None = None,
    db_path: str | None = None,
) -> int:
    """Delete expired terminal jobs; failures are logged, never raised.

    Opens (and closes) its own connection when none is passed in.
    Returns the number of deleted rows, or 0 when the sweep failed.
    """
    owns_conn = conn is None
    try:
        if conn is None:
            conn = init_db(db_path)
        deleted = sweep_expired_jobs(conn, retention_hours=retention_hours, now=now)
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "job_sweep_failed", error=str(exc))
        return 0
    finally:
        if owns_conn and conn is not None:
            conn.close()
    log_event(
        logger,
        logging.INFO,
        "jobs_swept",
        deleted=deleted,
        retention_hours=retention_hours,
    )
    return deleted
