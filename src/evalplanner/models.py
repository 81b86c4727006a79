from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import jsonschema

from .errors import ValidationError

JOB_TYPES = ("prompt1", "prompt2", "report_template")

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

JOB_STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)
TERMINAL_STATUSES = (COMPLETED, FAILED)

INPUT_DATA_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["messages"],
    "properties": {
        "messages": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["role", "content"],
                "properties": {
                    "role": {"type": "string", "minLength": 1},
                    "content": {"type": "string", "minLength": 1},
                },
            },
        },
        "max_tokens": {"type": "integer", "minimum": 1},
    },
}


@dataclass(frozen=True)
class Job:
    id: int
    job_type: str
    status: str
    input_data: dict[str, Any]
    result_data: str | None
    error: str | None
    created_at: str
    started_at: str | None
    completed_at: str | None
    locked_by: str | None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def messages(self) -> list[dict[str, Any]]:
        return list(self.input_data.get("messages") or [])


def validate_job_type(job_type: object) -> str:
    if job_type is None or job_type == "":
        raise ValidationError("missing required field: job_type")
    if not isinstance(job_type, str):
        raise ValidationError(f"job_type must be a string, got {type(job_type).__name__}")
    if job_type not in JOB_TYPES:
        raise ValidationError(
            f"invalid job_type {job_type!r}; must be one of: {', '.join(JOB_TYPES)}"
        )
    return job_type


def validate_input_data(input_data: object) -> dict[str, Any]:
    if input_data is None:
        raise ValidationError("missing required field: input_data")
    try:
        jsonschema.validate(input_data, INPUT_DATA_SCHEMA)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path)
        where = f"input_data/{location}" if location else "input_data"
        raise ValidationError(f"invalid {where}: {exc.message}") from exc
    return dict(input_data)


def validate_submission(job_type: object, input_data: object) -> tuple[str, dict[str, Any]]:
    return validate_job_type(job_type), validate_input_data(input_data)
