"""Request limiter wrapper around pyrate-limiter."""

from __future__ import annotations

import re
import threading
import time
from typing import TYPE_CHECKING

import structlog
from pyrate_limiter import Duration, InMemoryBucket, Limiter, Rate

if TYPE_CHECKING:
    from types import TracebackType

logger = structlog.get_logger(__name__)

# Pattern for valid limiter names (used as the bucket item key)
_VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*$")


class RequestLimiter:
    """Token-bucket limiter shared by every worker of a collector.

    One in-memory bucket per configured interval. pyrate-limiter can skip
    checking longer-interval rates while under the shorter ones when they
    share a bucket, so each rate gets its own Limiter and acquire() goes
    through all of them.

    defer() pauses every caller until a point in time, which is how an
    upstream Retry-After is applied to the whole pool rather than to the one
    worker that saw the 429.

    Example:
        with RequestLimiter("github", requests_per_hour=4500) as limiter:
            limiter.acquire()
            client.get(...)
    """

    def __init__(
        self,
        name: str,
        requests_per_second: int | None = None,
        requests_per_minute: int | None = None,
        requests_per_hour: int | None = None,
    ) -> None:
        """Initialize limiter.

        Raises:
            ValueError: If name is invalid, no rate is given, or a rate is not positive.
        """
        if not _VALID_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid limiter name: {name!r}. Name must start with a letter and contain only alphanumeric characters and underscores."
            )

        configured = [
            (requests_per_second, Duration.SECOND),
            (requests_per_minute, Duration.MINUTE),
            (requests_per_hour, Duration.HOUR),
        ]
        for limit, _ in configured:
            if limit is not None and limit <= 0:
                raise ValueError(f"Rate limits must be positive, got {limit}")
        if all(limit is None for limit, _ in configured):
            raise ValueError("At least one rate is required")

        self.name = name
        self._lock = threading.Lock()
        self._resume_at = 0.0
        self._buckets: list[InMemoryBucket] = []
        self._limiters: list[Limiter] = []
        for limit, interval in configured:
            if limit is None:
                continue
            bucket = InMemoryBucket([Rate(limit, interval)])
            self._buckets.append(bucket)
            # Wait up to a minute for a token (an hour for hourly buckets) before raising
            max_delay = Duration.HOUR if interval == Duration.HOUR else Duration.MINUTE
            self._limiters.append(Limiter(bucket, max_delay=max_delay, raise_when_fail=True))

    def defer(self, seconds: float) -> None:
        """Hold every caller of acquire() for at least `seconds` from now."""
        if seconds <= 0:
            return
        with self._lock:
            resume_at = time.monotonic() + seconds
            if resume_at > self._resume_at:
                self._resume_at = resume_at
                logger.info("Limiter deferred", limiter=self.name, seconds=round(seconds, 3))

    def _deferred_for(self) -> float:
        with self._lock:
            return max(0.0, self._resume_at - time.monotonic())

    def acquire(self, weight: int = 1, cancel_event: threading.Event | None = None) -> None:
        """Acquire tokens, blocking while deferred or while a bucket is full.

        Args:
            weight: Number of tokens to acquire (default 1)
            cancel_event: If set while waiting out a deferral, return early
        """
        while (remaining := self._deferred_for()) > 0:
            if cancel_event is None:
                time.sleep(remaining)
            elif cancel_event.wait(remaining):
                return
        for limiter in self._limiters:
            limiter.try_acquire(self.name, weight=weight)

    def close(self) -> None:
        """Dispose the buckets and stop pyrate-limiter's leak thread for them."""
        for limiter, bucket in zip(self._limiters, self._buckets, strict=True):
            limiter.dispose(bucket)
        self._limiters.clear()
        self._buckets.clear()

    def __enter__(self) -> RequestLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
