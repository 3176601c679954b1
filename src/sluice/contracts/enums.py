"""Status codes, modes, and kinds shared across subsystem boundaries.

Values that end up in the database (subtask_runs.status, subtask_runs.sync_mode)
are StrEnums so the stored text and the in-memory value are the same thing.
"""

from enum import StrEnum


class SyncMode(StrEnum):
    """How much of the upstream a collection stage has to fetch.

    Stored in database (subtask_runs.sync_mode).
    """

    FULL = "full"
    INCREMENTAL = "incremental"


class StageStatus(StrEnum):
    """Lifecycle of one stage within one pipeline run.

    PENDING -> RUNNING -> COMPLETED | FAILED | CANCELLED
    PENDING -> SKIPPED

    Stored in database (subtask_runs.status).
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (StageStatus.PENDING, StageStatus.RUNNING)


class PipelineStatus(StrEnum):
    """Aggregate outcome of a pipeline run."""

    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StatusClass(StrEnum):
    """Coarse classification of one HTTP exchange."""

    SUCCESS = "2xx"
    CLIENT_ERROR = "4xx"
    SERVER_ERROR = "5xx"
    TRANSPORT_ERROR = "transport"

    @classmethod
    def from_status_code(cls, status_code: int) -> "StatusClass":
        if 200 <= status_code < 300:
            return cls.SUCCESS
        if status_code >= 500:
            return cls.SERVER_ERROR
        # 1xx/3xx that survive redirect handling are unusable responses
        return cls.CLIENT_ERROR


class Disposition(StrEnum):
    """What the collector does after a strategy has seen a page outcome.

    CONTINUE: persist the page and request the next one. For a failed fetch,
        CONTINUE means the strategy did not contain the failure, so it
        escalates to ABORT_ALL.
    SKIP_ITEM: drop the item from this run and record a skip with a reason.
    ABORT_ITEM: stop paging this item; pages already persisted stay and the
        item counts as processed.
    ABORT_ALL: the whole stage fails.
    """

    CONTINUE = "continue"
    SKIP_ITEM = "skip-item"
    ABORT_ITEM = "abort-item"
    ABORT_ALL = "abort-all"


class CollectorStatus(StrEnum):
    """Final status reported by a collector run that did not raise."""

    COMPLETED = "completed"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
