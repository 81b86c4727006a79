from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

from .db import DBConn, connect_db
from .errors import InvalidStateError, NotFoundError
from .models import (
    COMPLETED,
    FAILED,
    JOB_STATUSES,
    PENDING,
    PROCESSING,
    Job,
    validate_submission,
)
from .utils import isoformat_utc, json_dumps, log_event, utc_now_iso

_JOB_COLUMNS = """
    id, job_type, status, input_data, result_data, error, created_at,
    started_at, completed_at, locked_by
"""

logger = logging.getLogger("evalplanner.storage")


def init_db(path: str | None = None) -> DBConn:
    return connect_db(path)


def insert_job(conn: Any, job_type: str, input_data: dict[str, Any]) -> int:
    return create_job(conn, job_type, input_data).id


def create_job(conn: Any, job_type: str, input_data: dict[str, Any]) -> Job:
    job_type, input_data = validate_submission(job_type, input_data)
    cursor = conn.execute(
        f"""
        INSERT INTO jobs (job_type, status, input_data, created_at)
        VALUES (?, ?, ?, ?)
        RETURNING {_JOB_COLUMNS}
        """,
        (job_type, PENDING, json_dumps(input_data), utc_now_iso()),
    )
    return _row_to_job(_first_row(cursor))


def claim_next_pending(conn: Any, worker_id: str | None = None) -> Job | None:
    with conn.transaction():
        rows = conn.execute(
            """
            SELECT id
            FROM jobs
            WHERE status = 'pending'
            ORDER BY created_at ASC, id ASC
            LIMIT 1
            FOR UPDATE SKIP LOCKED
            """
        ).fetchall()
        if not rows:
            return None
        now = utc_now_iso()
        updated = conn.execute(
            f"""
            UPDATE jobs
            SET status = ?, started_at = ?, locked_by = ?
            WHERE id = ? AND status = ?
            RETURNING {_JOB_COLUMNS}
            """,
            (PROCESSING, now, worker_id, rows[0][0], PENDING),
        ).fetchall()
    if not updated:
        return None
    return _row_to_job(updated[0])


def complete_job(conn: Any, job_id: int, result_text: str) -> Job:
    if not isinstance(result_text, str):
        raise TypeError("result_text must be a string")
    cursor = conn.execute(
        f"""
        UPDATE jobs
        SET status = ?, result_data = ?, error = NULL, completed_at = ?
        WHERE id = ? AND status = ?
        RETURNING {_JOB_COLUMNS}
        """,
        (COMPLETED, result_text, utc_now_iso(), job_id, PROCESSING),
    )
    row = _first_row(cursor)
    if not row:
        _raise_transition_error(conn, job_id, COMPLETED)
    return _row_to_job(row)


def fail_job(conn: Any, job_id: int, error_text: str) -> Job:
    cursor = conn.execute(
        f"""
        UPDATE jobs
        SET status = ?, error = ?, result_data = NULL, completed_at = ?
        WHERE id = ? AND status = ?
        RETURNING {_JOB_COLUMNS}
        """,
        (FAILED, error_text or "unknown_error", utc_now_iso(), job_id, PROCESSING),
    )
    row = _first_row(cursor)
    if not row:
        _raise_transition_error(conn, job_id, FAILED)
    return _row_to_job(row)


def get_job(conn: Any, job_id: int) -> Job | None:
    row = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = ?",
        (job_id,),
    ).fetchone()
    return _row_to_job(row) if row else None


def delete_terminal_older_than(conn: Any, cutoff: datetime | str) -> int:
    cutoff_iso = isoformat_utc(cutoff) if isinstance(cutoff, datetime) else cutoff
    cursor = conn.execute(
        """
        DELETE FROM jobs
        WHERE status IN (?, ?)
          AND completed_at IS NOT NULL
          AND completed_at < ?
        """,
        (COMPLETED, FAILED, cutoff_iso),
    )
    return int(cursor.rowcount or 0)


def list_jobs(conn: Any, limit: int = 50, status: str | None = None) -> list[Job]:
    if status is not None and status not in JOB_STATUSES:
        raise ValueError(f"unknown status {status}")
    if status:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM jobs
            WHERE status = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (status, limit),
        )
    else:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS}
            FROM jobs
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_job(row) for row in cursor.fetchall()]


def count_jobs_by_status(conn: Any) -> dict[str, int]:
    counts = {status: 0 for status in JOB_STATUSES}
    for status, count in conn.execute(
        "SELECT status, COUNT(*) FROM jobs GROUP BY status"
    ).fetchall():
        counts[status] = int(count or 0)
    return counts


def ping(conn: Any) -> bool:
    row = conn.execute("SELECT 1").fetchone()
    return bool(row and row[0] == 1)


def _first_row(cursor) -> tuple | None:
    # drain RETURNING cursors so sqlite finishes the statement and releases its lock
    rows = cursor.fetchall()
    return rows[0] if rows else None


def _raise_transition_error(conn: Any, job_id: int, target: str) -> None:
    job = get_job(conn, job_id)
    if job is None:
        raise NotFoundError(f"job {job_id} not found")
    log_event(
        logger,
        logging.ERROR,
        "job_invalid_transition",
        job_id=job_id,
        status=job.status,
        target=target,
    )
    raise InvalidStateError(
        f"job {job_id} is {job.status}; only processing jobs can become {target}"
    )


def _row_to_job(row: tuple) -> Job:
    (
        job_id,
        job_type,
        status,
        input_json,
        result_data,
        error,
        created_at,
        started_at,
        completed_at,
        locked_by,
    ) = row
    try:
        input_data = json.loads(input_json) if input_json else {}
    except json.JSONDecodeError:
        input_data = {}
    return Job(
        id=int(job_id),
        job_type=job_type,
        status=status,
        input_data=input_data,
        result_data=result_data,
        error=error,
        created_at=created_at,
        started_at=started_at,
        completed_at=completed_at,
        locked_by=locked_by,
    )
