from __future__ import annotations

import argparse
import json
import logging
import os

from .config import ConfigError, load_config
from .db import get_state_db_path
from .errors import NotFoundError, ValidationError
from .models import JOB_STATUSES, JOB_TYPES
from .services.jobs_service import status_of, submit
from .storage import count_jobs_by_status, init_db, list_jobs
from .sweeper import run_sweep
from .utils import configure_logging, json_dumps, log_event


def _setup_logging() -> logging.Logger:
    return configure_logging("evalplanner.cli")


def _open_store(args: argparse.Namespace, logger: logging.Logger):
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None, None
    return config, init_db(get_state_db_path(config.paths.data_dir))


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open_store(args, logger)
    if conn is None:
        return 1
    conn.close()
    log_event(logger, logging.INFO, "db_migrated", backend=conn.backend)
    return 0


def _cmd_jobs_submit(args: argparse.Namespace, logger: logging.Logger) -> int:
    if args.input_file:
        try:
            with open(args.input_file, "r", encoding="utf-8") as handle:
                input_data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            log_event(logger, logging.ERROR, "input_file_error", path=args.input_file, error=str(exc))
            return 1
    else:
        input_data = {"messages": [{"role": "user", "content": args.message or ""}]}
        if args.max_tokens:
            input_data["max_tokens"] = args.max_tokens

    _, conn = _open_store(args, logger)
    if conn is None:
        return 1
    try:
        created = submit(conn, args.job_type, input_data)
    except ValidationError as exc:
        log_event(logger, logging.ERROR, "job_rejected", job_type=args.job_type, error=str(exc))
        return 1
    finally:
        conn.close()
    logger.info(json_dumps(created))
    return 0


def _cmd_jobs_show(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open_store(args, logger)
    if conn is None:
        return 1
    try:
        job = status_of(conn, args.job_id)
    except NotFoundError:
        log_event(logger, logging.ERROR, "job_not_found", job_id=args.job_id)
        return 1
    finally:
        conn.close()
    logger.info(json.dumps(job, indent=2, sort_keys=True))
    return 0


def _cmd_jobs_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open_store(args, logger)
    if conn is None:
        return 1
    try:
        jobs = list_jobs(conn, limit=args.limit, status=args.status)
    finally:
        conn.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            job_type=job.job_type,
            status=job.status,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            locked_by=job.locked_by,
            error=job.error,
        )
    return 0


def _cmd_jobs_stats(args: argparse.Namespace, logger: logging.Logger) -> int:
    _, conn = _open_store(args, logger)
    if conn is None:
        return 1
    try:
        counts = count_jobs_by_status(conn)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "job_stats", **counts)
    return 0


def _cmd_jobs_sweep(args: argparse.Namespace, logger: logging.Logger) -> int:
    config, conn = _open_store(args, logger)
    if conn is None:
        return 1
    retention = args.retention_hours
    if retention is None:
        retention = config.worker.retention_hours
    try:
        run_sweep(conn, retention_hours=retention)
    finally:
        conn.close()
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    from .api import app
    from .worker import start_background_worker

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    if args.config:
        # the app reloads config per request from the environment
        os.environ["EP_CONFIG_FILE"] = args.config

    stop_event = None
    if config.server.embedded_worker and not args.no_worker:
        worker_id = f"{os.environ.get('HOSTNAME', 'server')}-embedded"
        _, stop_event = start_background_worker(worker_id, config)
        log_event(logger, logging.INFO, "embedded_worker_started", worker_id=worker_id)
    else:
        log_event(logger, logging.INFO, "embedded_worker_disabled")

    host = args.host or config.server.host
    port = args.port or config.server.port
    log_event(logger, logging.INFO, "server_starting", host=host, port=port)
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        if stop_event is not None:
            stop_event.set()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="evalplanner", description="Evaluation Planner job queue CLI")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to EP_CONFIG_FILE or built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    jobs_parser = subparsers.add_parser("jobs", help="Job queue commands")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)

    jobs_submit = jobs_subparsers.add_parser("submit", help="Submit a job")
    jobs_submit.add_argument("job_type", choices=JOB_TYPES)
    source = jobs_submit.add_mutually_exclusive_group(required=True)
    source.add_argument("--message", help="Single user message content")
    source.add_argument("--input-file", help="JSON file holding the full input_data object")
    jobs_submit.add_argument("--max-tokens", type=int, default=None)
    jobs_submit.set_defaults(func=_cmd_jobs_submit)

    jobs_show = jobs_subparsers.add_parser("show", help="Show a job")
    jobs_show.add_argument("job_id", type=int)
    jobs_show.set_defaults(func=_cmd_jobs_show)

    jobs_list = jobs_subparsers.add_parser("list", help="List recent jobs")
    jobs_list.add_argument("--limit", type=int, default=20)
    jobs_list.add_argument("--status", choices=JOB_STATUSES, default=None)
    jobs_list.set_defaults(func=_cmd_jobs_list)

    jobs_stats = jobs_subparsers.add_parser("stats", help="Count jobs per status")
    jobs_stats.set_defaults(func=_cmd_jobs_stats)

    jobs_sweep = jobs_subparsers.add_parser("sweep", help="Delete expired terminal jobs now")
    jobs_sweep.add_argument("--retention-hours", type=float, default=None)
    jobs_sweep.set_defaults(func=_cmd_jobs_sweep)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument(
        "--no-worker",
        action="store_true",
        help="Do not run the embedded job worker thread",
    )
    serve_parser.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
