from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any

import yaml

from .errors import ValidationError
from .models import JOB_TYPES


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class AppConfig:
    name: str


@dataclass(frozen=True)
class PathsConfig:
    data_dir: str
    prompts_dir: str


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int
    embedded_worker: bool


@dataclass(frozen=True)
class WorkerConfig:
    poll_interval_seconds: float
    sweep_interval_seconds: float
    retention_hours: float


@dataclass(frozen=True)
class CompletionConfig:
    base_url: str
    timeout_seconds: float
    max_attempts: int
    backoff_seconds: float
    min_response_chars: int
    default_max_tokens: int


@dataclass(frozen=True)
class ModelSettings:
    model: str
    temperature: float | None


@dataclass(frozen=True)
class Config:
    app: AppConfig
    paths: PathsConfig
    server: ServerConfig
    worker: WorkerConfig
    completion: CompletionConfig
    models: dict[str, ModelSettings]


DEFAULT_MODEL = "openai/gpt-5.1"

DEFAULT_CONFIG: dict[str, Any] = {
    "app": {
        "name": "Evaluation Planner",
    },
    "paths": {
        "data_dir": "/data",
        "prompts_dir": "prompts",
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "embedded_worker": True,
    },
    "worker": {
        "poll_interval_seconds": 5.0,
        "sweep_interval_seconds": 3600.0,
        "retention_hours": 6.0,
    },
    "completion": {
        "base_url": "https://openrouter.ai/api/v1",
        "timeout_seconds": 300.0,
        "max_attempts": 3,
        "backoff_seconds": 2.0,
        "min_response_chars": 500,
        "default_max_tokens": 4000,
    },
    "models": {
        job_type: {"model": DEFAULT_MODEL, "temperature": 0.7} for job_type in JOB_TYPES
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def load_config(path: str | None = None, environ: dict[str, str] | None = None) -> Config:
    env = os.environ if environ is None else environ
    cfg = _deep_copy(DEFAULT_CONFIG)
    config_path = path or env.get("EP_CONFIG_FILE", "").strip()
    if config_path:
        _deep_merge(cfg, load_config_file(config_path))
    _apply_env_overrides(cfg, env)
    errors = validate_config(cfg)
    if errors:
        raise ConfigError("Invalid config: " + "; ".join(errors))
    return _build_config(cfg)


def load_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file is not valid YAML: {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("config file must contain a mapping")
    return data


def validate_config(cfg: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    _validate_dict(cfg, DEFAULT_CONFIG, "config", errors)
    return errors


def resolve_model_settings(config: Config, job_type: str) -> ModelSettings:
    settings = config.models.get(job_type)
    if settings is None:
        raise ValidationError(
            f"invalid job_type {job_type!r}; must be one of: {', '.join(sorted(config.models))}"
        )
    return settings


def get_api_key(environ: dict[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    key = env.get("OPENROUTER_API_KEY", "")
    return key.strip() or None


def _apply_env_overrides(cfg: dict[str, Any], env: dict[str, str]) -> None:
    data_dir = env.get("EP_DATA_DIR", "").strip()
    if data_dir:
        cfg["paths"]["data_dir"] = data_dir
    prompts_dir = env.get("EP_PROMPTS_DIR", "").strip()
    if prompts_dir:
        cfg["paths"]["prompts_dir"] = prompts_dir
    embedded = env.get("EP_ENABLE_JOB_PROCESSOR", "").strip().lower()
    if embedded:
        if embedded in _TRUE_VALUES:
            cfg["server"]["embedded_worker"] = True
        elif embedded in _FALSE_VALUES:
            cfg["server"]["embedded_worker"] = False
        else:
            raise ConfigError("EP_ENABLE_JOB_PROCESSOR must be true or false")
    models = cfg.get("models")
    if not isinstance(models, dict):
        return
    for job_type in JOB_TYPES:
        prefix = f"EP_{job_type.upper()}"
        model = env.get(f"{prefix}_MODEL", "").strip()
        if model and isinstance(models.get(job_type), dict):
            models[job_type]["model"] = model
        temperature = env.get(f"{prefix}_TEMPERATURE", "").strip()
        if temperature and isinstance(models.get(job_type), dict):
            try:
                models[job_type]["temperature"] = float(temperature)
            except ValueError as exc:
                raise ConfigError(f"{prefix}_TEMPERATURE must be a number") from exc


def _validate_dict(value: dict[str, Any], schema: dict[str, Any], path: str, errors: list[str]) -> None:
    if not isinstance(value, dict):
        errors.append(f"{path} must be an object")
        return
    for key in schema.keys():
        if key not in value:
            errors.append(f"missing {path}.{key}")
    for key in value.keys():
        if key not in schema:
            errors.append(f"unknown {path}.{key}")
    for key, default in schema.items():
        if key not in value:
            continue
        _validate_value(value[key], default, f"{path}.{key}", errors)


def _validate_value(value: Any, default: Any, path: str, errors: list[str]) -> None:
    if isinstance(default, dict):
        if not isinstance(value, dict):
            errors.append(f"{path} must be an object")
            return
        _validate_dict(value, default, path, errors)
        return
    if isinstance(default, bool):
        if not isinstance(value, bool):
            errors.append(f"{path} must be a boolean")
        return
    if isinstance(default, int):
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{path} must be an integer")
        elif value <= 0:
            errors.append(f"{path} must be positive")
        return
    if isinstance(default, float):
        if path.endswith(".temperature") and value is None:
            return
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            errors.append(f"{path} must be a number")
        elif value < 0:
            errors.append(f"{path} must not be negative")
        return
    if isinstance(default, str):
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{path} must be a non-empty string")
        return


def _build_config(cfg: dict[str, Any]) -> Config:
    app_cfg = cfg["app"]
    paths_cfg = cfg["paths"]
    server_cfg = cfg["server"]
    worker_cfg = cfg["worker"]
    completion_cfg = cfg["completion"]

    models = {}
    for job_type, entry in cfg["models"].items():
        temperature = entry.get("temperature")
        models[job_type] = ModelSettings(
            model=str(entry["model"]),
            temperature=float(temperature) if temperature is not None else None,
        )

    return Config(
        app=AppConfig(name=str(app_cfg["name"])),
        paths=PathsConfig(
            data_dir=str(paths_cfg["data_dir"]),
            prompts_dir=str(paths_cfg["prompts_dir"]),
        ),
        server=ServerConfig(
            host=str(server_cfg["host"]),
            port=int(server_cfg["port"]),
            embedded_worker=bool(server_cfg["embedded_worker"]),
        ),
        worker=WorkerConfig(
            poll_interval_seconds=float(worker_cfg["poll_interval_seconds"]),
            sweep_interval_seconds=float(worker_cfg["sweep_interval_seconds"]),
            retention_hours=float(worker_cfg["retention_hours"]),
        ),
        completion=CompletionConfig(
            base_url=str(completion_cfg["base_url"]),
            timeout_seconds=float(completion_cfg["timeout_seconds"]),
            max_attempts=int(completion_cfg["max_attempts"]),
            backoff_seconds=float(completion_cfg["backoff_seconds"]),
            min_response_chars=int(completion_cfg["min_response_chars"]),
            default_max_tokens=int(completion_cfg["default_max_tokens"]),
        ),
        models=models,
    )


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> None:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _deep_copy(value: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(value))
