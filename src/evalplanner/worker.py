from __future__ import annotations

import argparse
import logging
import os
import threading
import time
from typing import Any

from .config import Config, ConfigError, load_config, resolve_model_settings
from .db import get_state_db_path
from .errors import InvalidStateError
from .llm.client import CompletionClient
from .models import Job
from .storage import claim_next_pending, complete_job, fail_job, init_db
from .sweeper import run_sweep
from .utils import configure_logging, log_event, truncate_text


def _setup_logging() -> logging.Logger:
    return configure_logging("evalplanner.worker")


def open_store(config: Config):
    return init_db(get_state_db_path(config.paths.data_dir))


def run_once(
    worker_id: str,
    conn: Any | None = None,
    config: Config | None = None,
    client: CompletionClient | None = None,
    logger: logging.Logger | None = None,
) -> int:
    logger = logger or _setup_logging()
    if config is None:
        try:
            config = load_config()
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "config_error", error=str(exc))
            return 1

    owns_conn = conn is None
    if conn is None:
        conn = open_store(config)
    try:
        job = claim_next_pending(conn, worker_id)
        if not job:
            return 0
        if client is None:
            client = CompletionClient.from_config(config.completion)
        return _process_claimed_job(conn, config, client, job, logger)
    finally:
        if owns_conn:
            conn.close()


def _process_claimed_job(
    conn: Any,
    config: Config,
    client: CompletionClient,
    job: Job,
    logger: logging.Logger,
) -> int:
    log_event(
        logger,
        logging.INFO,
        "job_claimed",
        job_id=job.id,
        job_type=job.job_type,
        worker_id=job.locked_by,
    )
    started = time.monotonic()
    try:
        text = run_claimed_job(config, client, job)
    except Exception as exc:  # noqa: BLE001
        message = _failure_message(exc)
        try:
            fail_job(conn, job.id, message)
        except InvalidStateError as state_exc:
            log_event(logger, logging.ERROR, "job_fail_failed", job_id=job.id, error=str(state_exc))
            return 1
        log_event(
            logger,
            logging.ERROR,
            "job_failed",
            job_id=job.id,
            job_type=job.job_type,
            error_type=type(exc).__name__,
            error=message,
        )
        return 1

    try:
        complete_job(conn, job.id, text)
    except InvalidStateError as exc:
        log_event(logger, logging.ERROR, "job_complete_failed", job_id=job.id, error=str(exc))
        return 1
    log_event(
        logger,
        logging.INFO,
        "job_succeeded",
        job_id=job.id,
        job_type=job.job_type,
        chars=len(text),
        duration_seconds=round(time.monotonic() - started, 3),
    )
    return 0


def run_claimed_job(config: Config, client: CompletionClient, job: Job) -> str:
    settings = resolve_model_settings(config, job.job_type)
    max_tokens = job.input_data.get("max_tokens") or config.completion.default_max_tokens
    return client.complete(
        job.messages,
        max_tokens,
        model=settings.model,
        temperature=settings.temperature,
    )


def _failure_message(exc: Exception) -> str:
    return truncate_text(str(exc) or type(exc).__name__)


def run_loop(
    worker_id: str,
    sleep_seconds: float | None = None,
    *,
    config: Config | None = None,
    client: CompletionClient | None = None,
    stop_event: threading.Event | None = None,
    sweep: bool = True,
) -> int:
    logger = _setup_logging()
    if config is None:
        try:
            config = load_config()
        except ConfigError as exc:
            log_event(logger, logging.ERROR, "config_error", error=str(exc))
            return 1
    if client is None:
        client = CompletionClient.from_config(config.completion)
    if sleep_seconds is None:
        sleep_seconds = config.worker.poll_interval_seconds
    stop_event = stop_event or threading.Event()

    log_event(
        logger,
        logging.INFO,
        "worker_started",
        worker_id=worker_id,
        sleep_seconds=sleep_seconds,
        api_key_configured=client.configured,
    )
    next_sweep = 0.0
    while not stop_event.is_set():
        if sweep and time.monotonic() >= next_sweep:
            run_sweep(
                retention_hours=config.worker.retention_hours,
                db_path=get_state_db_path(config.paths.data_dir),
            )
            next_sweep = time.monotonic() + config.worker.sweep_interval_seconds
        try:
            run_once(worker_id, config=config, client=client, logger=logger)
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                logging.ERROR,
                "worker_tick_error",
                worker_id=worker_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
        stop_event.wait(sleep_seconds)
    log_event(logger, logging.INFO, "worker_stopped", worker_id=worker_id)
    return 0


def start_background_worker(
    worker_id: str,
    config: Config,
    client: CompletionClient | None = None,
) -> tuple[threading.Thread, threading.Event]:
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_loop,
        args=(worker_id,),
        kwargs={"config": config, "client": client, "stop_event": stop_event},
        name=f"evalplanner-worker-{worker_id}",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="evalplanner-worker")
    parser.add_argument("--once", action="store_true", help="Process at most one job and exit")
    parser.add_argument(
        "--sleep",
        type=float,
        default=None,
        help="Seconds between polls (defaults to worker.poll_interval_seconds)",
    )
    parser.add_argument("--worker-id", default=os.environ.get("HOSTNAME", "worker"))
    parser.add_argument("--no-sweep", action="store_true", help="Do not run the retention sweeper")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.once:
        return run_once(args.worker_id)
    return run_loop(args.worker_id, args.sleep, sweep=not args.no_sweep)


if __name__ == "__main__":
    raise SystemExit(main())
