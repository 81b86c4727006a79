import pytest

from evalplanner.config import (
    ConfigError,
    DEFAULT_CONFIG,
    get_api_key,
    load_config,
    resolve_model_settings,
    validate_config,
)
from evalplanner.errors import ValidationError


def test_defaults_load(tmp_path):
    config = load_config()

    assert config.paths.data_dir == str(tmp_path / "data")
    assert config.worker.poll_interval_seconds == 5.0
    assert config.worker.retention_hours == 6.0
    assert config.completion.timeout_seconds == 300.0
    assert config.completion.max_attempts == 3
    assert config.completion.min_response_chars == 500
    assert set(config.models) == {"prompt1", "prompt2", "report_template"}
    assert config.server.embedded_worker is True


def test_yaml_file_is_merged(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "worker:\n"
        "  poll_interval_seconds: 1\n"
        "models:\n"
        "  prompt1:\n"
        "    model: openai/gpt-4o\n"
        "    temperature: null\n",
        encoding="utf-8",
    )

    config = load_config(str(path))

    assert config.worker.poll_interval_seconds == 1.0
    assert config.worker.sweep_interval_seconds == 3600.0
    assert config.models["prompt1"].model == "openai/gpt-4o"
    assert config.models["prompt1"].temperature is None
    assert config.models["prompt2"].temperature == 0.7


def test_config_file_from_env(tmp_path, monkeypatch):
    path = tmp_path / "config.yml"
    path.write_text("server:\n  port: 8080\n", encoding="utf-8")
    monkeypatch.setenv("EP_CONFIG_FILE", str(path))

    assert load_config().server.port == 8080


def test_env_overrides_models(monkeypatch):
    monkeypatch.setenv("EP_PROMPT1_MODEL", "meta/llama")
    monkeypatch.setenv("EP_PROMPT1_TEMPERATURE", "0.1")
    monkeypatch.setenv("EP_ENABLE_JOB_PROCESSOR", "false")

    config = load_config()

    assert resolve_model_settings(config, "prompt1").model == "meta/llama"
    assert resolve_model_settings(config, "prompt1").temperature == 0.1
    assert config.server.embedded_worker is False


def test_bad_env_values_raise(monkeypatch):
    monkeypatch.setenv("EP_PROMPT2_TEMPERATURE", "warm")
    with pytest.raises(ConfigError):
        load_config()


def test_unknown_and_mistyped_keys_rejected(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(
        "worker:\n  poll_interval: 3\ncompletion:\n  max_attempts: three\n",
        encoding="utf-8",
    )

    with pytest.raises(ConfigError) as excinfo:
        load_config(str(path))

    message = str(excinfo.value)
    assert "unknown config.worker.poll_interval" in message
    assert "config.completion.max_attempts must be an integer" in message


def test_missing_file_and_bad_yaml(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(tmp_path / "missing.yml"))

    bad = tmp_path / "bad.yml"
    bad.write_text("worker: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid YAML"):
        load_config(str(bad))


def test_defaults_validate_cleanly():
    assert validate_config(DEFAULT_CONFIG) == []


def test_resolve_unknown_job_type():
    with pytest.raises(ValidationError):
        resolve_model_settings(load_config(), "bogus")


def test_api_key_from_env(monkeypatch):
    assert get_api_key() is None
    monkeypatch.setenv("OPENROUTER_API_KEY", "  sk-1  ")
    assert get_api_key() == "sk-1"
