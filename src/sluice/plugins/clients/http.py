# src/sluice/plugins/clients/http.py
"""Authenticated HTTP client shared by the workers of a collector."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog

if TYPE_CHECKING:
    import threading
    from types import TracebackType

    from sluice.core.rate_limit import NoOpLimiter, RequestLimiter

logger = structlog.get_logger(__name__)

TRUNCATION_SUFFIX = "... (truncated)"


@dataclass(frozen=True)
class ApiRequest:
    """One request built by a collector strategy.

    url may be relative to the client's base_url.
    """

    url: str
    method: str = "GET"
    params: Mapping[str, Any] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    json: Any = None


def preview_body(text: str | None, limit: int) -> str | None:
    """Cap a response body at `limit` UTF-8 bytes for logs and skip records."""
    if text is None:
        return None
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore") + TRUNCATION_SUFFIX


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


class ApiClient:
    """httpx client with default headers, base URL and a request limiter.

    httpx.Client is thread-safe; its pool handles concurrent workers. Every
    request passes through the limiter first, so the configured rate holds
    regardless of how many workers share the client.

    Example:
        client = ApiClient(
            "https://api.github.com",
            headers={"Authorization": "Bearer ..."},
            limiter=registry.get_limiter("github"),
        )
        response = client.send(ApiRequest("repos/apache/incubator-devlake/actions/runs"))
    """

    def __init__(
        self,
        base_url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        limiter: RequestLimiter | NoOpLimiter | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._limiter = limiter
        self._client = httpx.Client(
            base_url=base_url,
            headers=dict(headers or {}),
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def limiter(self) -> RequestLimiter | NoOpLimiter | None:
        return self._limiter

    def resolve_url(self, url: str) -> str:
        """Absolute form of a request URL, as it appears in logs and skip records."""
        return str(self._client.base_url.join(url))

    def send(self, request: ApiRequest, *, cancel_event: threading.Event | None = None) -> httpx.Response:
        """Send one request after acquiring the limiter.

        Raises:
            httpx.TransportError: Connection, DNS, TLS or timeout failure
        """
        if self._limiter is not None:
            self._limiter.acquire(cancel_event=cancel_event)

        start = time.perf_counter()
        response = self._client.request(
            request.method,
            request.url,
            params=dict(request.params) or None,
            headers=dict(request.headers) or None,
            json=request.json,
        )
        logger.debug(
            "HTTP request",
            method=request.method,
            url=str(response.request.url),
            status_code=response.status_code,
            latency_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return response

    def get(self, url: str, *, params: Mapping[str, Any] | None = None) -> httpx.Response:
        return self.send(ApiRequest(url=url, params=params or {}))

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ApiClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()
