from datetime import datetime, timedelta, timezone

from evalplanner.storage import claim_next_pending, complete_job, fail_job, get_job, insert_job
from evalplanner.sweeper import run_sweep, sweep_expired_jobs


def _finish(conn, messages, result=None, error=None) -> int:
    job_id = insert_job(conn, "prompt1", {"messages": messages})
    claim_next_pending(conn)
    if error is not None:
        fail_job(conn, job_id, error)
    else:
        complete_job(conn, job_id, result or "ok")
    return job_id


def test_sweep_removes_only_expired_terminal_jobs(conn, messages):
    done = _finish(conn, messages)
    failed = _finish(conn, messages, error="boom")
    pending = insert_job(conn, "prompt1", {"messages": messages})

    later = datetime.now(tz=timezone.utc) + timedelta(hours=7)
    assert sweep_expired_jobs(conn, retention_hours=6, now=later) == 2
    assert get_job(conn, done) is None
    assert get_job(conn, failed) is None
    assert get_job(conn, pending) is not None


def test_sweep_keeps_jobs_inside_retention_window(conn, messages):
    done = _finish(conn, messages)

    soon = datetime.now(tz=timezone.utc) + timedelta(hours=5)
    assert sweep_expired_jobs(conn, retention_hours=6, now=soon) == 0
    assert get_job(conn, done) is not None


def test_sweep_never_removes_stuck_processing_job(conn, messages):
    job_id = insert_job(conn, "prompt1", {"messages": messages})
    claim_next_pending(conn)

    far_future = datetime.now(tz=timezone.utc) + timedelta(days=30)
    assert sweep_expired_jobs(conn, retention_hours=6, now=far_future) == 0
    assert get_job(conn, job_id).status == "processing"


def test_run_sweep_is_idempotent(conn, messages):
    _finish(conn, messages)
    later = datetime.now(tz=timezone.utc) + timedelta(hours=7)

    assert run_sweep(conn, retention_hours=6, now=later) == 1
    assert run_sweep(conn, retention_hours=6, now=later) == 0


def test_run_sweep_opens_its_own_connection(conn, messages):
    job_id = _finish(conn, messages)
    later = datetime.now(tz=timezone.utc) + timedelta(hours=7)

    assert run_sweep(retention_hours=6, now=later) == 1
    assert get_job(conn, job_id) is None


def test_run_sweep_logs_instead_of_raising(caplog):
    class BrokenConn:
        def execute(self, *args, **kwargs):
            raise RuntimeError("store unavailable")

    with caplog.at_level("ERROR", logger="evalplanner.sweeper"):
        assert run_sweep(BrokenConn()) == 0

    assert "event=job_sweep_failed" in caplog.text
    assert "store unavailable" in caplog.text
