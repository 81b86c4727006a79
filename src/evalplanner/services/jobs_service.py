from __future__ import annotations

import logging
from typing import Any

from ..errors import NotFoundError
from ..storage import create_job, get_job
from ..utils import log_event

logger = logging.getLogger("evalplanner.jobs")


def submit(conn: Any, job_type: Any, input_data: Any) -> dict[str, Any]:
    job = create_job(conn, job_type, input_data)
    log_event(logger, logging.INFO, "job_enqueued", job_id=job.id, job_type=job.job_type)
    return {"id": job.id, "status": job.status, "created_at": job.created_at}


def status_of(conn: Any, job_id: int) -> dict[str, Any]:
    job = get_job(conn, job_id)
    if job is None:
        raise NotFoundError(f"job {job_id} not found")
    return {
        "id": job.id,
        "job_type": job.job_type,
        "status": job.status,
        "result": job.result_data,
        "error": job.error,
        "created_at": job.created_at,
        "completed_at": job.completed_at,
    }
