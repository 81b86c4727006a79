from __future__ import annotations


class JobQueueError(Exception):
    pass


class ValidationError(JobQueueError, ValueError):
    """Submission rejected before anything was written."""


class NotFoundError(JobQueueError, LookupError):
    pass


class InvalidStateError(JobQueueError):
    """A status transition the state machine does not allow."""


class CompletionError(Exception):
    retryable = True

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class UpstreamError(CompletionError):
    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class CompletionTimeoutError(CompletionError, TimeoutError):
    pass


class TruncatedResponseError(CompletionError):
    pass
