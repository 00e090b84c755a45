# core/errors.py
"""Error taxonomy shared by the generation client, caches and scheduler."""

from __future__ import annotations

from enum import Enum


class GenerationErrorKind(str, Enum):
    """Classification of a failed generation call."""

    RATE_LIMITED = "rate_limited"
    AUTH = "auth"
    MALFORMED_REQUEST = "malformed_request"
    SERVER_UNAVAILABLE = "server_unavailable"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        GenerationErrorKind.RATE_LIMITED,
        GenerationErrorKind.SERVER_UNAVAILABLE,
        GenerationErrorKind.UNKNOWN,
    }
)

_USER_MESSAGES = {
    GenerationErrorKind.RATE_LIMITED: "Rate limit exceeded. Please wait a moment before trying again.",
    GenerationErrorKind.AUTH: "API authentication failed. Please contact support.",
    GenerationErrorKind.MALFORMED_REQUEST: "Invalid request. Please check your input and try again.",
    GenerationErrorKind.SERVER_UNAVAILABLE: "Generation service is temporarily unavailable. Please try again later.",
    GenerationErrorKind.UNKNOWN: "An unexpected error occurred during generation.",
}


class PagewrightError(Exception):
    """Base class for all pagewright errors."""


class GenerationError(PagewrightError):
    """A generation call failed."""

    retryable: bool = False

    def __init__(
        self,
        message: str | None = None,
        kind: GenerationErrorKind = GenerationErrorKind.UNKNOWN,
        status_code: int | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        super().__init__(message or _USER_MESSAGES[kind])


class RetryableGenerationError(GenerationError):
    """Rate limit or transient server failure; safe to try again."""

    retryable = True


class NonRetryableGenerationError(GenerationError):
    """Bad request, auth or validation failure; retrying cannot help."""

    retryable = False


class OperationTimeoutError(PagewrightError, TimeoutError):
    """A dispatched operation did not finish inside its time limit."""


class ResultsTimeoutError(PagewrightError, TimeoutError):
    """Not every awaited operation reached a terminal state in time."""

    def __init__(self, missing_ids: list[str], timeout: float) -> None:
        self.missing_ids = missing_ids
        self.timeout = timeout
        super().__init__(
            f"Timeout waiting for {len(missing_ids)} operation(s) after {timeout:.2f}s"
        )


class CacheCorruptionError(PagewrightError):
    """A stored cache payload could not be decoded."""

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        super().__init__(f"Corrupt cache entry '{key}': {reason}")


class CapacityError(PagewrightError):
    """A cache was configured with an unusable capacity."""


def classify_status(status_code: int | None) -> GenerationErrorKind:
    """Map an HTTP status code to a :class:`GenerationErrorKind`."""
    if status_code is None:
        return GenerationErrorKind.UNKNOWN
    if status_code == 429:
        return GenerationErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return GenerationErrorKind.AUTH
    if status_code in (400, 404, 413, 422):
        return GenerationErrorKind.MALFORMED_REQUEST
    if status_code >= 500:
        return GenerationErrorKind.SERVER_UNAVAILABLE
    return GenerationErrorKind.UNKNOWN


def error_for_kind(
    kind: GenerationErrorKind,
    message: str | None = None,
    status_code: int | None = None,
) -> GenerationError:
    """Build the retryable or non-retryable error matching ``kind``."""
    error_cls = (
        RetryableGenerationError
        if kind in RETRYABLE_KINDS
        else NonRetryableGenerationError
    )
    return error_cls(message, kind=kind, status_code=status_code)


def error_for_status(status_code: int | None, detail: str | None = None) -> GenerationError:
    """Build a classified error for an HTTP status code."""
    kind = classify_status(status_code)
    message = _USER_MESSAGES[kind]
    if detail:
        message = f"{message} ({detail})"
    return error_for_kind(kind, message, status_code)


def is_retryable(exc: BaseException) -> bool:
    """Return whether the batch layer may re-queue after ``exc``.

    Timeouts and unclassified failures (treated as UNKNOWN) are retryable.
    """
    return not isinstance(exc, NonRetryableGenerationError)
