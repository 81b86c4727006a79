"""Single round trip to the hosted chat-completions API.

Every outbound completion in the service goes through ``CompletionClient``:
the worker uses :meth:`CompletionClient.complete`, the synchronous proxy
endpoint uses :meth:`CompletionClient.create_completion`. Both share one
retry routine so timeout, backoff and truncation handling stay identical.
"""

from __future__ import annotations

import http.client
import json
import logging
import time
import urllib.error
import urllib.request
from typing import Any, Callable

from ..config import CompletionConfig, get_api_key
from ..errors import (
    CompletionError,
    CompletionTimeoutError,
    TruncatedResponseError,
    UpstreamError,
)
from ..utils import log_event, truncate_text

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
RETRYABLE_STATUS_CODES = {408, 425, 429}
_READ_CHUNK_BYTES = 64 * 1024


class CompletionClient:
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 300.0,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        min_response_chars: int = 500,
        default_max_tokens: int = 4000,
        opener: Callable[..., Any] | None = None,
        sleep: Callable[[float], None] | None = None,
        clock: Callable[[], float] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.min_response_chars = min_response_chars
        self.default_max_tokens = default_max_tokens
        self._opener = opener or urllib.request.urlopen
        self._sleep = sleep or time.sleep
        self._clock = clock or time.monotonic
        self._logger = logger or logging.getLogger("evalplanner.llm")

    @classmethod
    def from_config(
        cls,
        config: CompletionConfig,
        api_key: str | None = None,
        **kwargs: Any,
    ) -> "CompletionClient":
        return cls(
            api_key if api_key is not None else get_api_key(),
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            max_attempts=config.max_attempts,
            backoff_seconds=config.backoff_seconds,
            min_response_chars=config.min_response_chars,
            default_max_tokens=config.default_max_tokens,
            **kwargs,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def complete(
        self,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
        *,
        model: str,
        temperature: float | None = None,
    ) -> str:
        _, text = self._call_with_retries(
            self._build_payload(messages, max_tokens, model, temperature)
        )
        return text

    def create_completion(
        self,
        messages: list[dict[str, Any]],
        max_tokens: int | None = None,
        *,
        model: str,
        temperature: float | None = None,
    ) -> dict[str, Any]:
        data, _ = self._call_with_retries(
            self._build_payload(messages, max_tokens, model, temperature)
        )
        return data

    def backoff_for(self, attempt: int) -> float:
        """Delay before ``attempt`` (1-based); the first attempt never waits."""
        if attempt <= 1:
            return 0.0
        return self.backoff_seconds * (2 ** (attempt - 2))

    def _build_payload(
        self,
        messages: list[dict[str, Any]],
        max_tokens: int | None,
        model: str,
        temperature: float | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": int(max_tokens or self.default_max_tokens),
        }
        if temperature is not None:
            payload["temperature"] = temperature
        return payload

    def _call_with_retries(self, payload: dict[str, Any]) -> tuple[dict[str, Any], str]:
        if not self.api_key:
            raise UpstreamError("api_key_not_configured", retryable=False)
        last_error: CompletionError | None = None
        for attempt in range(1, self.max_attempts + 1):
            delay = self.backoff_for(attempt)
            if delay > 0:
                log_event(
                    self._logger,
                    logging.INFO,
                    "completion_retry",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                )
                self._sleep(delay)
            try:
                return self._attempt(payload)
            except CompletionError as exc:
                last_error = exc
                log_event(
                    self._logger,
                    logging.WARNING,
                    "completion_attempt_failed",
                    attempt=attempt,
                    error_type=type(exc).__name__,
                    retryable=exc.retryable,
                    error=str(exc),
                )
                if not exc.retryable:
                    raise
        raise last_error or UpstreamError("no_attempts_made")

    def _attempt(self, payload: dict[str, Any]) -> tuple[dict[str, Any], str]:
        request = urllib.request.Request(
            self.base_url.rstrip("/") + "/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
        )
        request.add_header("Content-Type", "application/json")
        request.add_header("Authorization", f"Bearer {self.api_key}")
        deadline = self._clock() + self.timeout_seconds
        try:
            with self._opener(request, timeout=self.timeout_seconds) as response:
                raw = self._read_body(response, deadline)
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise UpstreamError(
                f"http_error {exc.code}: {truncate_text(detail)}",
                status_code=exc.code,
                retryable=exc.code in RETRYABLE_STATUS_CODES or exc.code >= 500,
            ) from exc
        except TimeoutError as exc:
            raise CompletionTimeoutError(
                f"timeout: no complete response within {self.timeout_seconds:g}s"
            ) from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise CompletionTimeoutError(
                    f"timeout: no complete response within {self.timeout_seconds:g}s"
                ) from exc
            raise UpstreamError(f"network_error: {exc.reason}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise UpstreamError(f"network_error: {exc}") from exc

        if len(raw) < self.min_response_chars:
            raise TruncatedResponseError(
                f"response_too_short: {len(raw)} chars, likely truncated"
            )
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TruncatedResponseError(f"response_parse_error: {exc.msg}") from exc
        return data, _read_content(data)

    def _read_body(self, response: Any, deadline: float) -> str:
        chunks: list[bytes] = []
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise TimeoutError("completion deadline exceeded")
            _limit_socket_wait(response, remaining)
            # read1 returns after a single recv, so a slow drip still reaches the deadline check
            chunk = response.read1(_READ_CHUNK_BYTES)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks).decode("utf-8", errors="replace")


def _limit_socket_wait(response: Any, seconds: float) -> None:
    # HTTPResponse keeps its socket behind fp.raw; each recv may only wait out the attempt budget
    raw = getattr(getattr(response, "fp", None), "raw", None)
    sock = getattr(raw, "_sock", None)
    if sock is not None:
        sock.settimeout(max(0.01, seconds))


def _read_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise TruncatedResponseError("response_parse_error: expected a JSON object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            raise UpstreamError(f"upstream_error: {truncate_text(str(error['message']))}")
        raise TruncatedResponseError("response_missing_choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str) or not content:
        raise TruncatedResponseError("response_missing_content")
    return content
