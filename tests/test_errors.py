# tests/test_errors.py
import pytest
from core.errors import (
    GenerationErrorKind,
    NonRetryableGenerationError,
    OperationTimeoutError,
    RetryableGenerationError,
    classify_status,
    error_for_status,
    is_retryable,
)


@pytest.mark.parametrize(
    "status, kind",
    [
        (429, GenerationErrorKind.RATE_LIMITED),
        (401, GenerationErrorKind.AUTH),
        (403, GenerationErrorKind.AUTH),
        (400, GenerationErrorKind.MALFORMED_REQUEST),
        (422, GenerationErrorKind.MALFORMED_REQUEST),
        (500, GenerationErrorKind.SERVER_UNAVAILABLE),
        (503, GenerationErrorKind.SERVER_UNAVAILABLE),
        (418, GenerationErrorKind.UNKNOWN),
        (None, GenerationErrorKind.UNKNOWN),
    ],
)
def test_classify_status(status, kind):
    assert classify_status(status) is kind


def test_error_for_status_picks_retryability():
    rate_limited = error_for_status(429, "slow down")
    assert isinstance(rate_limited, RetryableGenerationError)
    assert rate_limited.status_code == 429
    assert "slow down" in str(rate_limited)

    auth = error_for_status(401)
    assert isinstance(auth, NonRetryableGenerationError)
    assert str(auth) == "API authentication failed. Please contact support."


def test_is_retryable():
    assert is_retryable(RetryableGenerationError())
    assert is_retryable(OperationTimeoutError("late"))
    assert is_retryable(RuntimeError("unclassified"))
    assert not is_retryable(NonRetryableGenerationError())
