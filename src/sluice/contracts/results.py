"""Result types produced by collectors, extractors and the runner."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sluice.contracts.enums import CollectorStatus, PipelineStatus, StageStatus, StatusClass

if TYPE_CHECKING:
    import httpx

    from sluice.contracts.errors import CollectorError


@dataclass(frozen=True)
class FetchAttemptResult:
    """Outcome of fetching one page for one item, after retries.

    This is what a CollectorStrategy classifies. It exists only inside one
    collector execution.

    Attributes:
        item: Input item being collected (None for the synthetic input)
        item_key: Canonical identity of the item (None for the synthetic input)
        page: 1-based ordinal of the page within the item's sequence
        url: Request URL
        status_class: 2xx / 4xx / 5xx / transport
        status_code: HTTP status, None for transport failures
        body: Size-capped body preview (only filled for failures)
        response: The final response, None for transport failures
        error: Structured failure, None for a usable 2xx
        attempts: Attempts spent on this page
        items: Items parsed from a usable 2xx body
    """

    item: Any
    item_key: str | None
    page: int
    url: str
    status_class: StatusClass
    status_code: int | None = None
    body: str | None = None
    response: httpx.Response | None = None
    error: CollectorError | None = None
    attempts: int = 1
    items: tuple[Any, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SkipRecord:
    """One item excluded from a collector run, with the reason why.

    An unattributed skip (item_key is None) comes from the synthetic input of
    a non-parameterized endpoint.
    """

    item: Any
    item_key: str | None
    reason: str
    kind: str
    status_code: int | None = None
    url: str | None = None

    @property
    def attributed(self) -> bool:
        return self.item_key is not None

    def describe(self) -> str:
        who = self.item_key if self.attributed else "<unattributed>"
        return f"{who}: {self.reason}"


@runtime_checkable
class StageReport(Protocol):
    """What a stage entry point may hand back to the runner."""

    @property
    def finished_records(self) -> int: ...

    @property
    def skipped_count(self) -> int: ...

    @property
    def cancelled(self) -> bool: ...

    def summary(self) -> str: ...


@dataclass(frozen=True)
class CollectorResult:
    """Aggregate outcome of one collector execution that did not raise.

    Attributes:
        table: Raw table written
        processed: Items whose page sequence finished
        skipped: Items excluded by isolated failures, with reasons
        pages: Pages persisted
        records: Items found across persisted pages
        status: completed, partial (some skips) or cancelled
        elapsed_seconds: Wall time of the execution
    """

    table: str
    processed: int
    skipped: tuple[SkipRecord, ...]
    pages: int
    records: int
    status: CollectorStatus
    elapsed_seconds: float = 0.0

    @property
    def total_items(self) -> int:
        return self.processed + len(self.skipped)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def finished_records(self) -> int:
        return self.records

    @property
    def cancelled(self) -> bool:
        return self.status == CollectorStatus.CANCELLED

    @property
    def partial(self) -> bool:
        return self.status != CollectorStatus.COMPLETED

    def summary(self) -> str:
        text = f"{self.processed} of {self.total_items} items collected into {self.table} ({self.pages} pages, {self.records} records)"
        if self.skipped:
            reasons = "; ".join(skip.describe() for skip in self.skipped)
            text += f", {len(self.skipped)} skipped: {reasons}"
        if self.cancelled:
            text += ", cancelled before completion"
        return text


@dataclass(frozen=True)
class ExtractorResult:
    """Aggregate outcome of one raw-to-product extraction."""

    raw_table: str
    product_table: str
    records_read: int
    rows_written: int
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def finished_records(self) -> int:
        return self.rows_written

    @property
    def skipped_count(self) -> int:
        return 0

    def summary(self) -> str:
        text = f"{self.rows_written} rows extracted into {self.product_table} from {self.records_read} raw records"
        if self.cancelled:
            text += ", cancelled before completion"
        return text


@dataclass(frozen=True)
class StageOutcome:
    """Result of one stage within one pipeline run."""

    name: str
    sequence: int
    status: StageStatus
    message: str = ""
    error: BaseException | None = None
    report: StageReport | None = None
    run_id: str | None = None
    began_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def spent_seconds(self) -> float:
        if self.began_at is None or self.finished_at is None:
            return 0.0
        return (self.finished_at - self.began_at).total_seconds()


@dataclass(frozen=True)
class PipelineResult:
    """Aggregate outcome of a pipeline run."""

    pipeline_run_id: str
    status: PipelineStatus
    stages: tuple[StageOutcome, ...] = field(default_factory=tuple)
    failed_stage: str | None = None

    def outcome(self, name: str) -> StageOutcome:
        for stage in self.stages:
            if stage.name == name:
                return stage
        raise KeyError(f"Stage {name!r} is not part of pipeline run {self.pipeline_run_id}")

    def statuses(self) -> dict[str, StageStatus]:
        return {stage.name: stage.status for stage in self.stages}
