"""Tests for RetryManager."""

import threading
import time
import warnings

import pytest

from sluice.contracts.config import RetryConfig
from sluice.contracts.errors import ClientError, RateLimitedError, ServerError
from sluice.engine.retry import MaxRetriesExceeded, RetryManager
from tests.helpers import FAST_RETRY


def _retryable(error: BaseException) -> bool:
    return getattr(error, "retryable", False)


class _Flaky:
    """Fails with the given errors, then returns "ok"."""

    def __init__(self, *errors: Exception) -> None:
        self._errors = list(errors)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)
        return "ok"


class TestRetryManager:
    def test_success_first_try(self) -> None:
        operation = _Flaky()

        result = RetryManager(FAST_RETRY).execute_with_retry(operation, is_retryable=_retryable)

        assert result == "ok"
        assert operation.calls == 1

    def test_success_after_retryable_failures(self) -> None:
        operation = _Flaky(ServerError("boom"), ServerError("boom"))
        retries: list[int] = []

        result = RetryManager(FAST_RETRY).execute_with_retry(
            operation,
            is_retryable=_retryable,
            on_retry=lambda attempt, error: retries.append(attempt),
        )

        assert result == "ok"
        assert operation.calls == 3
        assert retries == [1, 2]

    def test_max_retries_exceeded(self) -> None:
        operation = _Flaky(*(ServerError(f"boom {i}") for i in range(5)))
        retries: list[int] = []

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            RetryManager(FAST_RETRY).execute_with_retry(
                operation,
                is_retryable=_retryable,
                on_retry=lambda attempt, error: retries.append(attempt),
            )

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, ServerError)
        assert str(exc_info.value.last_error) == "boom 2"
        assert operation.calls == 3
        # No callback for the attempt that is not followed by a retry
        assert retries == [1, 2]

    def test_non_retryable_raises_immediately(self) -> None:
        operation = _Flaky(ClientError("bad request", status_code=400))

        with pytest.raises(ClientError, match="bad request"):
            RetryManager(FAST_RETRY).execute_with_retry(operation, is_retryable=_retryable)

        assert operation.calls == 1

    def test_single_attempt(self) -> None:
        operation = _Flaky(ServerError("boom"))

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            RetryManager(RetryConfig.no_retry()).execute_with_retry(operation, is_retryable=_retryable)

        assert exc_info.value.attempts == 1

    def test_retry_after_is_lower_bound(self) -> None:
        operation = _Flaky(RateLimitedError("slow down", retry_after=0.2))

        start = time.monotonic()
        result = RetryManager(FAST_RETRY).execute_with_retry(operation, is_retryable=_retryable)

        assert result == "ok"
        assert time.monotonic() - start >= 0.15

    def test_cancellation_stops_retrying(self) -> None:
        cancel = threading.Event()
        cancel.set()
        operation = _Flaky(*(ServerError("boom") for _ in range(5)))
        slow = RetryConfig(max_attempts=5, base_delay=30.0, max_delay=30.0, jitter=0.0)

        start = time.monotonic()
        with pytest.raises(MaxRetriesExceeded):
            RetryManager(slow, cancel_event=cancel).execute_with_retry(operation, is_retryable=_retryable)

        assert operation.calls == 1
        assert time.monotonic() - start < 5


class TestBackoffConfiguration:
    def test_no_deprecation_warnings(self) -> None:
        operation = _Flaky(ServerError("boom"))

        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            manager = RetryManager(RetryConfig(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=0.0))
            result = manager.execute_with_retry(operation, is_retryable=_retryable)

        assert result == "ok"
        assert operation.calls == 2
