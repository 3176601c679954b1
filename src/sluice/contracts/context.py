"""Per-stage execution handle passed to every entry point."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog

from sluice.contracts.config import RuntimeConfig

if TYPE_CHECKING:
    from sluice.contracts.subtask import SubTaskMeta
    from sluice.core.store.database import StoreDB
    from sluice.core.store.journal import Journal
    from sluice.core.store.raw import RawDataStore
    from sluice.core.store.sync_state import SyncState, WatermarkSource


@dataclass
class TaskContext:
    """Everything a stage needs, owned by exactly one stage execution.

    The runner builds a fresh context per stage from a shared template: the
    store handles, params and data bag are shared across stages of one
    pipeline run, the logger is bound to the stage name.

    Example:
        def collect_jobs(ctx: TaskContext) -> CollectorResult:
            state = ctx.resolve_sync_state(WatermarkSource(github_jobs, "last_activity_at", where))
            ...
    """

    db: StoreDB
    store: RawDataStore
    journal: Journal
    params: Mapping[str, Any]
    config: RuntimeConfig = field(default_factory=RuntimeConfig)
    logger: Any = field(default_factory=lambda: structlog.get_logger("sluice.task"))
    cancel_event: threading.Event = field(default_factory=threading.Event)
    time_after: datetime | None = None
    full_sync: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    stage: SubTaskMeta | None = None
    pipeline_run_id: str | None = None
    sync_state: SyncState | None = None
    _progress: int = field(default=0, repr=False)
    _progress_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def progress(self) -> int:
        with self._progress_lock:
            return self._progress

    def increment_progress(self, count: int = 1) -> int:
        """Add to the stage's progress counter. Safe to call from worker threads."""
        with self._progress_lock:
            self._progress += count
            return self._progress

    def resolve_sync_state(self, watermark: WatermarkSource, *, incremental_allowed: bool = True) -> SyncState:
        """Decide full vs incremental for this stage and remember the answer.

        The resolved state is kept on the context so the runner can journal
        the mode and watermark the stage actually used.
        """
        from sluice.core.store.sync_state import SyncStateResolver

        if self.stage is None:
            raise RuntimeError("resolve_sync_state() requires a context bound to a stage")
        resolver = SyncStateResolver(self.db, self.journal)
        self.sync_state = resolver.resolve(
            self.params,
            stage=self.stage.name,
            watermark=watermark,
            incremental_allowed=incremental_allowed and not self.full_sync,
            time_after=self.time_after,
        )
        self.logger.info(
            "Sync state resolved",
            mode=str(self.sync_state.mode),
            since=self.sync_state.since.isoformat() if self.sync_state.since else None,
        )
        return self.sync_state
