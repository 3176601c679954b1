"""Error kinds raised across the collection engine.

Every collector error carries the input item it belongs to as a typed
attribute. Nothing downstream recovers context by parsing message text.

Item-level kinds (caught and classified at the collector boundary):
    TransportError      retryable
    ServerError         retryable, skippable once retries are exhausted
    RateLimitedError    retryable, honours Retry-After
    NotFoundError       skippable, never retried
    ClientError         fatal for the stage, never retried
    RetryExhausted      retryable kind after the attempt budget ran out
    ResponseParseError  body could not be parsed into items

Stage-level kinds (reach the runner):
    PersistenceError, CollectionAborted, SkipThresholdExceeded
"""

from __future__ import annotations

from typing import Any, ClassVar


class CollectorError(Exception):
    """Failure of one page fetch, attributed to one input item.

    Attributes:
        item: The input item being collected (None for the synthetic input of
            a non-parameterized endpoint, which makes the failure unattributed)
        url: Request URL, when a request was built
        status_code: HTTP status, when a response was received
        body: Size-capped response body preview
    """

    kind: ClassVar[str] = "collector_error"
    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        item: Any = None,
        url: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.item = item
        self.url = url
        self.status_code = status_code
        self.body = body


class TransportError(CollectorError):
    """Connection, DNS, TLS or timeout failure before a response arrived."""

    kind = "transport"
    retryable = True


class ServerError(CollectorError):
    """Upstream answered 5xx."""

    kind = "server_error"
    retryable = True


class RateLimitedError(CollectorError):
    """Upstream answered 429.

    Attributes:
        retry_after: Seconds the upstream asked us to wait, if it said
    """

    kind = "rate_limited"
    retryable = True

    def __init__(self, message: str, *, retry_after: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class NotFoundError(CollectorError):
    """Upstream answered 404: the referenced resource no longer exists."""

    kind = "not_found"


class ClientError(CollectorError):
    """Upstream answered a 4xx other than 404/429 (or an unusable 1xx/3xx)."""

    kind = "client_error"


class ResponseParseError(CollectorError):
    """A 2xx body could not be turned into a sequence of items."""

    kind = "parse_error"


class RetryExhausted(CollectorError):
    """A retryable failure persisted through every allowed attempt.

    Attributes:
        attempts: Attempts made (equals the configured budget)
        last_error: The failure of the final attempt
    """

    kind = "retry_exhausted"

    def __init__(self, *, attempts: int, last_error: CollectorError) -> None:
        super().__init__(
            f"Retry exceeded {attempts} times calling {last_error.url}: {last_error}",
            item=last_error.item,
            url=last_error.url,
            status_code=last_error.status_code,
            body=last_error.body,
        )
        self.attempts = attempts
        self.last_error = last_error


class PersistenceError(Exception):
    """The store could not write or read. Always fatal for the stage."""

    def __init__(self, message: str, *, table: str | None = None) -> None:
        super().__init__(message)
        self.table = table


class CollectionAborted(Exception):
    """A strategy escalated an item outcome to abort the whole stage.

    Attributes:
        item: The input item whose outcome triggered the abort
        cause: The collector error behind the abort, if the fetch failed
    """

    def __init__(self, message: str, *, item: Any = None, cause: CollectorError | None = None) -> None:
        super().__init__(message)
        self.item = item
        self.cause = cause


class SkipThresholdExceeded(Exception):
    """Item-level skips exceeded the stage's tolerated ratio."""

    def __init__(self, *, skipped: int, total: int, threshold: float) -> None:
        self.skipped = skipped
        self.total = total
        self.threshold = threshold
        ratio = skipped / total if total else 0.0
        super().__init__(f"{skipped} of {total} items skipped ({ratio:.1%}), tolerated ratio is {threshold:.1%}")
