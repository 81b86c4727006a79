from __future__ import annotations

import pytest

from evalplanner.storage import init_db

_ENV_KEYS = (
    "EP_DB_URL",
    "DATABASE_URL",
    "EP_CONFIG_FILE",
    "EP_PROMPTS_DIR",
    "EP_ENABLE_JOB_PROCESSOR",
    "OPENROUTER_API_KEY",
    "EP_PROMPT1_MODEL",
    "EP_PROMPT1_TEMPERATURE",
    "EP_PROMPT2_MODEL",
    "EP_PROMPT2_TEMPERATURE",
    "EP_REPORT_TEMPLATE_MODEL",
    "EP_REPORT_TEMPLATE_TEMPERATURE",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("EP_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture
def conn(tmp_path):
    connection = init_db(str(tmp_path / "data" / "jobs.sqlite3"))
    yield connection
    connection.close()


@pytest.fixture
def messages():
    return [{"role": "user", "content": "hello"}]
