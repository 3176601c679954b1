"""Registry handing out one request limiter per upstream service."""

from __future__ import annotations

import threading
from types import TracebackType
from typing import TYPE_CHECKING

from sluice.core.rate_limit.limiter import RequestLimiter

if TYPE_CHECKING:
    from sluice.core.config import RateLimitSettings


class NoOpLimiter:
    """Limiter used when rate limiting is disabled.

    Same interface as RequestLimiter; every call returns immediately.
    """

    name = "noop"

    def acquire(self, weight: int = 1, cancel_event: threading.Event | None = None) -> None:
        """No-op acquire (always succeeds instantly)."""

    def defer(self, seconds: float) -> None:
        """No-op defer (nothing is ever held back)."""

    def close(self) -> None:
        """No-op close (nothing to clean up)."""

    def __enter__(self) -> NoOpLimiter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class RateLimitRegistry:
    """Creates limiters on demand and reuses them per service.

    Thread-safe for concurrent access. Two collectors talking to the same
    service share one limiter, so their requests are spaced together.

    Example:
        registry = RateLimitRegistry(settings.rate_limit)
        limiter = registry.get_limiter("github")
        ...
        registry.close()
    """

    def __init__(self, settings: RateLimitSettings) -> None:
        self._settings = settings
        self._limiters: dict[str, RequestLimiter] = {}
        self._lock = threading.Lock()
        self._noop_limiter = NoOpLimiter()

    def get_limiter(self, service_name: str) -> RequestLimiter | NoOpLimiter:
        """Get or create the limiter for a service (NoOpLimiter if disabled)."""
        if not self._settings.enabled:
            return self._noop_limiter

        with self._lock:
            if service_name not in self._limiters:
                service_config = self._settings.get_service_config(service_name)
                self._limiters[service_name] = RequestLimiter(
                    name=service_name,
                    requests_per_second=service_config.requests_per_second,
                    requests_per_minute=service_config.requests_per_minute,
                    requests_per_hour=service_config.requests_per_hour,
                )
            return self._limiters[service_name]

    def close(self) -> None:
        """Close all limiters and forget them."""
        with self._lock:
            for limiter in self._limiters.values():
                limiter.close()
            self._limiters.clear()

    def __enter__(self) -> RateLimitRegistry:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
