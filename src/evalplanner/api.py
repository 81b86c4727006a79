from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterator

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Config, ConfigError, get_api_key, load_config, resolve_model_settings
from .db import get_state_db_path
from .errors import (
    CompletionError,
    CompletionTimeoutError,
    NotFoundError,
    ValidationError,
)
from .llm.client import CompletionClient
from .models import JOB_TYPES, validate_input_data
from .prompts import check_prompts, load_prompt, reload_prompts
from .services.jobs_service import status_of, submit
from .storage import init_db, ping
from .utils import configure_logging, log_event

app = FastAPI(title="Evaluation Planner API")

logger = logging.getLogger("evalplanner.api")


class JobRequest(BaseModel):
    job_type: Any = None
    input_data: Any = None


class CompletionRequest(BaseModel):
    step: str | None = None
    messages: Any = None
    max_tokens: int | None = None


class LegacyProxyRequest(BaseModel):
    model: str | None = None
    messages: Any = None
    max_tokens: int | None = None
    temperature: float | None = None


def _get_config() -> Config:
    try:
        return load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _get_conn() -> Iterator[Any]:
    conn = init_db(get_state_db_path(_get_config().paths.data_dir))
    try:
        yield conn
    finally:
        conn.close()


def _get_client(config: Config) -> CompletionClient:
    return CompletionClient.from_config(config.completion)


def _get_version() -> str:
    try:
        from importlib.metadata import version

        return version("evalplanner")
    except Exception:  # noqa: BLE001
        return "unknown"


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@app.on_event("startup")
def _startup() -> None:
    configure_logging("evalplanner.api")
    try:
        config = load_config()
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return
    log_event(
        logger,
        logging.INFO,
        "prompts_checked",
        prompts_dir=config.paths.prompts_dir,
        **check_prompts(config.paths.prompts_dir),
    )
    log_event(logger, logging.INFO, "api_key_status", configured=bool(get_api_key()))


@app.get("/health")
def health():
    try:
        conn = init_db(get_state_db_path(load_config().paths.data_dir))
        try:
            healthy = ping(conn)
        finally:
            conn.close()
        if not healthy:
            raise RuntimeError("SELECT 1 returned an unexpected result")
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "health_check_failed", error=str(exc))
        return JSONResponse(
            {"status": "unhealthy", "error": str(exc), "time": _now()},
            status_code=503,
        )
    return {"status": "healthy", "version": _get_version(), "time": _now()}


@app.post("/api/jobs")
def create_job(job: JobRequest, conn: Any = Depends(_get_conn)) -> dict[str, Any]:
    try:
        created = submit(conn, job.job_type, job.input_data)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "success": True,
        "job_id": created["id"],
        "status": created["status"],
        "created_at": created["created_at"],
    }


@app.get("/api/jobs/{job_id}")
def get_job_status(job_id: int, conn: Any = Depends(_get_conn)) -> dict[str, Any]:
    try:
        return status_of(conn, job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc


@app.post("/api/openrouter/chat/completions")
def chat_completions(payload: CompletionRequest) -> dict[str, Any]:
    if not payload.step or payload.step not in JOB_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"missing or invalid step; must be one of: {', '.join(JOB_TYPES)}",
        )
    body: dict[str, Any] = {"messages": payload.messages}
    if payload.max_tokens is not None:
        body["max_tokens"] = payload.max_tokens
    try:
        validate_input_data(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    config = _get_config()
    client = _get_client(config)
    if not client.configured:
        raise HTTPException(status_code=500, detail="OpenRouter API key not configured")
    settings = resolve_model_settings(config, payload.step)
    log_event(
        logger,
        logging.INFO,
        "completion_proxy_request",
        step=payload.step,
        model=settings.model,
        max_tokens=payload.max_tokens or config.completion.default_max_tokens,
    )
    return _proxy_completion(
        client,
        payload.messages,
        payload.max_tokens,
        model=settings.model,
        temperature=settings.temperature,
        step=payload.step,
    )


@app.post("/openrouter-proxy")
def legacy_proxy(payload: LegacyProxyRequest) -> dict[str, Any]:
    if not payload.model:
        raise HTTPException(status_code=400, detail="missing required field: model")
    body: dict[str, Any] = {"messages": payload.messages}
    if payload.max_tokens is not None:
        body["max_tokens"] = payload.max_tokens
    try:
        validate_input_data(body)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    client = _get_client(_get_config())
    if not client.configured:
        raise HTTPException(status_code=500, detail="OpenRouter API key not configured")
    log_event(
        logger,
        logging.INFO,
        "completion_proxy_request",
        step="legacy",
        model=payload.model,
        max_tokens=payload.max_tokens,
    )
    return _proxy_completion(
        client,
        payload.messages,
        payload.max_tokens,
        model=payload.model,
        temperature=payload.temperature,
        step="legacy",
    )


def _proxy_completion(
    client: CompletionClient,
    messages: list[dict[str, Any]],
    max_tokens: int | None,
    *,
    model: str,
    temperature: float | None,
    step: str,
) -> dict[str, Any]:
    try:
        return client.create_completion(
            messages,
            max_tokens,
            model=model,
            temperature=temperature,
        )
    except CompletionTimeoutError as exc:
        log_event(logger, logging.ERROR, "completion_proxy_timeout", step=step, error=str(exc))
        raise HTTPException(
            status_code=408,
            detail="request timed out; try again or use a smaller prompt",
        ) from exc
    except CompletionError as exc:
        log_event(logger, logging.ERROR, "completion_proxy_failed", step=step, error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/api/config")
def config_get() -> dict[str, Any]:
    config = _get_config()
    payload: dict[str, Any] = {
        job_type: {"model": settings.model, "temperature": settings.temperature}
        for job_type, settings in config.models.items()
    }
    payload["openrouter"] = {"configured": bool(get_api_key())}
    return payload


@app.get("/api/prompts/content/{step}")
def prompt_content(step: str) -> dict[str, str]:
    content = load_prompt(_get_config().paths.prompts_dir, step)
    if content is None:
        raise HTTPException(status_code=404, detail="prompt not found")
    return {"content": content}


@app.post("/api/prompts/reload")
def prompts_reload() -> dict[str, Any]:
    return {"ok": True, "cleared": reload_prompts()}
