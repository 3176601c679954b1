"""Shared contracts for sluice.

Leaf package: types here may be imported from anywhere. Modules under
sluice.core and sluice.engine are only referenced for type checking.
"""

from sluice.contracts.config import RetryConfig, RuntimeConfig
from sluice.contracts.context import TaskContext
from sluice.contracts.enums import (
    CollectorStatus,
    Disposition,
    PipelineStatus,
    StageStatus,
    StatusClass,
    SyncMode,
)
from sluice.contracts.errors import (
    ClientError,
    CollectionAborted,
    CollectorError,
    NotFoundError,
    PersistenceError,
    RateLimitedError,
    ResponseParseError,
    RetryExhausted,
    ServerError,
    SkipThresholdExceeded,
    TransportError,
)
from sluice.contracts.results import (
    CollectorResult,
    ExtractorResult,
    FetchAttemptResult,
    PipelineResult,
    SkipRecord,
    StageOutcome,
    StageReport,
)
from sluice.contracts.subtask import RAW_TABLE_PREFIX, EntryPoint, SubTaskMeta, TaskSetup

__all__ = [
    "RAW_TABLE_PREFIX",
    "ClientError",
    "CollectionAborted",
    "CollectorError",
    "CollectorResult",
    "CollectorStatus",
    "Disposition",
    "EntryPoint",
    "ExtractorResult",
    "FetchAttemptResult",
    "NotFoundError",
    "PersistenceError",
    "PipelineResult",
    "PipelineStatus",
    "RateLimitedError",
    "ResponseParseError",
    "RetryConfig",
    "RetryExhausted",
    "RuntimeConfig",
    "ServerError",
    "SkipRecord",
    "SkipThresholdExceeded",
    "StageOutcome",
    "StageReport",
    "StageStatus",
    "StatusClass",
    "SubTaskMeta",
    "SyncMode",
    "TaskContext",
    "TaskSetup",
    "TransportError",
]
