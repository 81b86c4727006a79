import json
import logging

from evalplanner import cli
from evalplanner.storage import claim_next_pending, complete_job, get_job, list_jobs


def test_db_migrate(caplog):
    with caplog.at_level(logging.INFO):
        assert cli.main(["db", "migrate"]) == 0
    assert "event=db_migrated backend=sqlite" in caplog.text


def test_jobs_submit_and_show(conn, caplog):
    with caplog.at_level(logging.INFO):
        assert cli.main(["jobs", "submit", "prompt1", "--message", "hello", "--max-tokens", "900"]) == 0

    jobs = list_jobs(conn)
    assert len(jobs) == 1
    assert jobs[0].input_data == {
        "messages": [{"role": "user", "content": "hello"}],
        "max_tokens": 900,
    }

    caplog.clear()
    with caplog.at_level(logging.INFO):
        assert cli.main(["jobs", "show", str(jobs[0].id)]) == 0
    assert '"status": "pending"' in caplog.text


def test_jobs_submit_from_file(conn, tmp_path):
    input_file = tmp_path / "input.json"
    input_file.write_text(
        json.dumps({"messages": [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]}),
        encoding="utf-8",
    )

    assert cli.main(["jobs", "submit", "report_template", "--input-file", str(input_file)]) == 0
    assert list_jobs(conn)[0].job_type == "report_template"


def test_jobs_submit_rejects_empty_message(conn):
    assert cli.main(["jobs", "submit", "prompt2", "--message", ""]) == 1
    assert list_jobs(conn) == []


def test_jobs_show_unknown(conn):
    assert cli.main(["jobs", "show", "99"]) == 1


def test_jobs_stats_and_sweep(conn, messages, caplog):
    cli.main(["jobs", "submit", "prompt1", "--message", "hello"])
    job = claim_next_pending(conn)
    complete_job(conn, job.id, "ok")

    with caplog.at_level(logging.INFO):
        assert cli.main(["jobs", "stats"]) == 0
    assert "completed=1" in caplog.text

    assert cli.main(["jobs", "sweep", "--retention-hours", "0"]) == 0
    assert get_job(conn, job.id) is None
