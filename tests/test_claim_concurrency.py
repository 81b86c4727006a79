import os
import threading

import pytest

from evalplanner.storage import claim_next_pending, get_job, init_db, insert_job


def _claim_concurrently(connections, worker_count: int):
    barrier = threading.Barrier(worker_count)
    results = [None] * worker_count
    errors = []

    def _claim(index: int) -> None:
        try:
            barrier.wait(timeout=5)
            results[index] = claim_next_pending(connections[index], f"worker-{index}")
        except Exception as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_claim, args=(index,)) for index in range(worker_count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    assert not errors
    return results


def test_single_pending_job_claimed_once_sqlite(tmp_path, messages):
    db_path = str(tmp_path / "data" / "jobs.sqlite3")
    connections = [init_db(db_path) for _ in range(4)]
    try:
        job_id = insert_job(connections[0], "prompt1", {"messages": messages})

        results = _claim_concurrently(connections, 4)

        winners = [job for job in results if job is not None]
        assert len(winners) == 1
        assert winners[0].id == job_id
        assert get_job(connections[0], job_id).locked_by == winners[0].locked_by
    finally:
        for connection in connections:
            connection.close()


def test_many_jobs_each_claimed_once_sqlite(tmp_path, messages):
    db_path = str(tmp_path / "data" / "jobs.sqlite3")
    connections = [init_db(db_path) for _ in range(3)]
    try:
        job_ids = {insert_job(connections[0], "prompt2", {"messages": messages}) for _ in range(3)}

        results = _claim_concurrently(connections, 3)

        claimed = [job.id for job in results if job is not None]
        assert sorted(claimed) == sorted(job_ids)
    finally:
        for connection in connections:
            connection.close()


@pytest.mark.skipif(
    not os.environ.get("EP_TEST_DB_URL"),
    reason="EP_TEST_DB_URL is required for Postgres-only tests",
)
def test_single_pending_job_claimed_once_postgres(monkeypatch, messages):
    monkeypatch.setenv("EP_DB_URL", os.environ["EP_TEST_DB_URL"])
    connections = [init_db() for _ in range(4)]
    try:
        connections[0].execute("DELETE FROM jobs")
        job_id = insert_job(connections[0], "prompt1", {"messages": messages})

        results = _claim_concurrently(connections, 4)

        winners = [job for job in results if job is not None]
        assert len(winners) == 1
        assert winners[0].id == job_id
    finally:
        for connection in connections:
            connection.close()
