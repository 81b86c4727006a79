from __future__ import annotations

import logging
import os
import re
import threading

from .models import JOB_TYPES
from .utils import log_event

_STEP_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# process-wide; guarded by its own lock, never held while jobs are processed
_CACHE: dict[tuple[str, str], str] = {}
_LOCK = threading.Lock()

logger = logging.getLogger("evalplanner.prompts")


def is_valid_step(step: str) -> bool:
    return bool(step) and bool(_STEP_RE.match(step))


def load_prompt(prompts_dir: str, step: str) -> str | None:
    if not is_valid_step(step):
        return None
    key = (os.path.abspath(prompts_dir), step)
    with _LOCK:
        if key in _CACHE:
            return _CACHE[key]
    path = os.path.join(key[0], f"{step}.md")
    try:
        with open(path, "r", encoding="utf-8") as handle:
            content = handle.read()
    except FileNotFoundError:
        return None
    except OSError as exc:
        log_event(logger, logging.ERROR, "prompt_load_failed", step=step, error=str(exc))
        return None
    with _LOCK:
        _CACHE[key] = content
    return content


def reload_prompts() -> int:
    with _LOCK:
        count = len(_CACHE)
        _CACHE.clear()
    log_event(logger, logging.INFO, "prompts_cache_cleared", entries=count)
    return count


def check_prompts(prompts_dir: str) -> dict[str, int | None]:
    """Length of each known prompt file, or None when it is missing."""
    report: dict[str, int | None] = {}
    for step in JOB_TYPES:
        content = load_prompt(prompts_dir, step)
        report[step] = len(content) if content is not None else None
    return report
