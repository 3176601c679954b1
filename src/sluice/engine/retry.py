# src/sluice/engine/retry.py
"""RetryManager: Retry logic with tenacity integration.

Provides configurable retry behavior for page fetches:
- Exponential backoff with jitter
- Configurable max attempts
- Retryable error filtering
- Retry-After honoured as a lower bound on the backoff
- Cooperative cancellation (stops retrying and interrupts backoff sleeps)
"""

import threading
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential_jitter,
)

from sluice.contracts.config import RetryConfig

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded (or cancellation stopped retrying)."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


class RetryManager:
    """Manages retry logic for one collector.

    Uses tenacity for exponential backoff with jitter. One manager is shared
    by every worker; tenacity state lives per call.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3), cancel_event=ctx.cancel_event)

        response = manager.execute_with_retry(
            operation=lambda: fetch(page),
            is_retryable=lambda e: isinstance(e, CollectorError) and e.retryable,
            on_retry=lambda attempt, error: log.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig, *, cancel_event: threading.Event | None = None) -> None:
        self._config = config
        self._cancel_event = cancel_event
        self._backoff = wait_exponential_jitter(
            multiplier=config.base_delay,
            max=config.max_delay,
            exp_base=config.exponential_base,
            jitter=config.jitter,
        )

    @property
    def config(self) -> RetryConfig:
        return self._config

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = float(self._backoff(retry_state))
        if retry_state.outcome is not None and retry_state.outcome.failed:
            retry_after = getattr(retry_state.outcome.exception(), "retry_after", None)
            if retry_after is not None:
                delay = max(delay, float(retry_after))
        return delay

    def _sleep(self, seconds: float) -> None:
        if self._cancel_event is None:
            threading.Event().wait(seconds)
        else:
            self._cancel_event.wait(seconds)

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Optional callback before each retry (attempt, error)

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        stop = stop_after_attempt(self._config.max_attempts)
        if self._cancel_event is not None:
            stop = stop | stop_when_event_set(self._cancel_event)

        attempt = 0
        last_error: BaseException | None = None

        try:
            for attempt_state in Retrying(
                stop=stop,
                wait=self._wait,
                sleep=self._sleep,
                retry=retry_if_exception(is_retryable),
                reraise=False,  # We catch RetryError and convert to MaxRetriesExceeded
            ):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # Only report retries that will actually happen
                        if is_retryable(e) and on_retry and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
