# src/sluice/contracts/config.py
"""Runtime configuration dataclasses.

Frozen values carried on TaskContext. Built from validated settings with
from_settings(); settings classes are imported lazily so contracts stays a
leaf package.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sluice.core.config import RetrySettings, SluiceSettings


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry behavior for one page fetch.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("retry delays must not be negative")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """Collector knobs for one pipeline run.

    Attributes:
        retry: Per-page retry behavior
        max_workers: Input items fetched concurrently
        page_size: Default page size for collectors that do not set one
        body_preview_bytes: Cap on the response body kept for failures
        max_skip_ratio: Fraction of skipped items that fails the stage (None disables)
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    max_workers: int = 4
    page_size: int = 100
    body_preview_bytes: int = 300
    max_skip_ratio: float | None = None

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")
        if self.max_skip_ratio is not None and not 0.0 <= self.max_skip_ratio <= 1.0:
            raise ValueError(f"max_skip_ratio must be between 0 and 1, got {self.max_skip_ratio}")

    @classmethod
    def from_settings(cls, settings: "SluiceSettings") -> "RuntimeConfig":
        return cls(
            retry=RetryConfig.from_settings(settings.retry),
            max_workers=settings.concurrency.max_workers,
            page_size=settings.collector.page_size,
            body_preview_bytes=settings.collector.body_preview_bytes,
            max_skip_ratio=settings.collector.max_skip_ratio,
        )
