# src/sluice/engine/runner.py
"""PipelineRunner: executes registered stages in dependency order.

Stages run strictly one after another on the caller's thread. Each stage
gets its own TaskContext; the run journal records every stage, including
the ones that never started.

Stage lifecycle within one run:

    PENDING -> SKIPPED                      cancelled, aborted, disabled, or no input data
    PENDING -> RUNNING -> COMPLETED         entry point returned
                       -> CANCELLED         entry point observed cancellation
                       -> FAILED            entry point raised
"""

from __future__ import annotations

import signal
import threading
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from sluice.contracts.config import RuntimeConfig
from sluice.contracts.context import TaskContext
from sluice.contracts.enums import PipelineStatus, StageStatus
from sluice.contracts.results import PipelineResult, StageOutcome, StageReport
from sluice.core.dag import StageGraph
from sluice.core.store.journal import Journal
from sluice.core.store.raw import RawDataStore

if TYPE_CHECKING:
    from sluice.contracts.subtask import SubTaskMeta
    from sluice.core.store.database import StoreDB
    from sluice.plugins.registry import SubTaskRegistry

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


@contextmanager
def cancel_on_signals() -> Iterator[threading.Event]:
    """Install SIGINT/SIGTERM handlers that set a cancel event.

    On first signal: sets the event and restores the default SIGINT handler,
    so a second Ctrl-C force-kills via KeyboardInterrupt.

    Off the main thread signal registration is skipped (signal.signal() raises
    ValueError there); the yielded Event still works when set directly.
    """
    cancel = threading.Event()

    if threading.current_thread() is not threading.main_thread():
        yield cancel
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, frame: Any) -> None:
        cancel.set()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield cancel
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


class PipelineRunner:
    """Runs the stages of a SubTaskRegistry against one store.

    Args:
        registry: Stages to run; registration order breaks ordering ties
        db: Store holding raw tables, product tables and the journal
        config: Runtime values handed to every stage
        store: Raw data store (default: one over db)
        journal: Run journal (default: one over db)

    Example:
        runner = PipelineRunner(registry, db, config=RuntimeConfig.from_settings(settings))
        result = runner.run({"connection_id": 1, "name": "apache/incubator-devlake"}, data)
    """

    def __init__(
        self,
        registry: SubTaskRegistry,
        db: StoreDB,
        *,
        config: RuntimeConfig | None = None,
        store: RawDataStore | None = None,
        journal: Journal | None = None,
    ) -> None:
        self._registry = registry
        self._db = db
        self._config = config or RuntimeConfig()
        self._store = store or RawDataStore(db)
        self._journal = journal or Journal(db)

    @property
    def journal(self) -> Journal:
        return self._journal

    def plan(self, selected: Iterable[str] | None = None) -> list[tuple[SubTaskMeta, bool]]:
        """Stages in execution order, each with whether it would run.

        Raises:
            StageGraphError: Cycle in the table relation, or an unknown stage selected
        """
        graph = StageGraph(self._registry.metas)
        chosen = graph.validate_selection(selected) if selected is not None else None
        return [(meta, self._enabled(meta, chosen)) for meta in graph.order()]

    @staticmethod
    def _enabled(meta: SubTaskMeta, chosen: set[str] | None) -> bool:
        if chosen is None:
            return meta.enabled_by_default
        return meta.name in chosen

    def run(
        self,
        params: Mapping[str, Any],
        data: Mapping[str, Any] | None = None,
        *,
        selected: Iterable[str] | None = None,
        time_after: datetime | None = None,
        full_sync: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """Run every stage once.

        Args:
            params: Connection identity and entity selectors for this run
            data: Objects shared by all stages (options, API client)
            selected: Explicit stage selection; overrides enabled_by_default
            time_after: Only collect entities updated after this instant
            full_sync: Force FULL mode for every stage
            cancel_event: Set to stop the run cooperatively

        Returns:
            PipelineResult with one StageOutcome per registered stage

        Raises:
            StageGraphError: Before any stage runs, if the stages cannot be ordered
        """
        plan = self.plan(selected)
        cancel = cancel_event or threading.Event()
        pipeline_run_id = uuid.uuid4().hex
        shared = dict(data or {})
        log = logger.bind(pipeline_run_id=pipeline_run_id)
        log.info("Pipeline started", stages=[meta.name for meta, _ in plan], full_sync=full_sync)

        graph = StageGraph(self._registry.metas)
        outcomes: list[StageOutcome] = []
        failed: str | None = None

        for sequence, (meta, enabled) in enumerate(plan, start=1):
            reason = self._skip_reason(meta, enabled, cancel, failed, graph)
            if reason is not None:
                self._journal.record_skipped(
                    pipeline_run_id=pipeline_run_id,
                    stage=meta.name,
                    sequence=sequence,
                    params=params,
                    message=reason,
                    time_after=time_after,
                    is_collector=meta.is_collector,
                )
                log.info("Stage skipped", stage=meta.name, reason=reason)
                outcomes.append(StageOutcome(meta.name, sequence, StageStatus.SKIPPED, message=reason, finished_at=_now()))
                continue

            ctx = TaskContext(
                db=self._db,
                store=self._store,
                journal=self._journal,
                params=params,
                config=self._config,
                logger=structlog.get_logger("sluice.task").bind(stage=meta.name, pipeline_run_id=pipeline_run_id),
                cancel_event=cancel,
                time_after=time_after,
                full_sync=full_sync,
                data=shared,
                stage=meta,
                pipeline_run_id=pipeline_run_id,
            )
            outcome = self._execute(meta, sequence, ctx)
            outcomes.append(outcome)
            if outcome.status == StageStatus.FAILED and not meta.skip_on_fail:
                failed = meta.name

        status = self._pipeline_status(outcomes, cancel, failed)
        log.info("Pipeline finished", status=str(status), failed_stage=failed)
        return PipelineResult(
            pipeline_run_id=pipeline_run_id,
            status=status,
            stages=tuple(outcomes),
            failed_stage=failed,
        )

    def _skip_reason(
        self,
        meta: SubTaskMeta,
        enabled: bool,
        cancel: threading.Event,
        failed: str | None,
        graph: StageGraph,
    ) -> str | None:
        if cancel.is_set():
            return "pipeline cancelled"
        if failed is not None:
            if failed in graph.upstream(meta.name):
                return f"upstream stage {failed} failed"
            return f"pipeline aborted after {failed} failed"
        if not enabled:
            return "disabled"
        empty = [table for table in meta.dependency_tables if not self._db.has_data(table)]
        if empty:
            reason = f"no data in dependency tables: {', '.join(empty)}"
            producers = [
                producer
                for producer in graph.producers_of(meta.name)
                if set(graph.tables_between(producer, meta.name)) & set(empty)
            ]
            if producers:
                reason += f" (produced by {', '.join(producers)})"
            return reason
        return None

    def _execute(self, meta: SubTaskMeta, sequence: int, ctx: TaskContext) -> StageOutcome:
        assert ctx.pipeline_run_id is not None
        run_id = self._journal.begin(
            pipeline_run_id=ctx.pipeline_run_id,
            stage=meta.name,
            sequence=sequence,
            params=ctx.params,
            time_after=ctx.time_after,
            is_collector=meta.is_collector,
        )
        began_at = _now()
        ctx.logger.info("Stage started", sequence=sequence)

        try:
            report = meta.entry_point(ctx)
            if report is not None and not isinstance(report, StageReport):
                raise TypeError(f"Stage {meta.name} returned {type(report).__name__}, expected a stage report or None")
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            ctx.logger.error("Stage failed", error=error, skip_on_fail=meta.skip_on_fail, exc_info=True)
            self._journal.finish(
                run_id,
                status=StageStatus.FAILED,
                finished_records=ctx.progress,
                message=error,
                error=error,
                sync_mode=ctx.sync_state.mode if ctx.sync_state else None,
                since=ctx.sync_state.since if ctx.sync_state else None,
            )
            return StageOutcome(
                meta.name,
                sequence,
                StageStatus.FAILED,
                message=error,
                error=e,
                run_id=run_id,
                began_at=began_at,
                finished_at=_now(),
            )

        cancelled = report.cancelled if report is not None else ctx.cancelled
        status = StageStatus.CANCELLED if cancelled else StageStatus.COMPLETED
        message = report.summary() if report is not None else ""
        self._journal.finish(
            run_id,
            status=status,
            finished_records=report.finished_records if report is not None else ctx.progress,
            skipped_records=report.skipped_count if report is not None else 0,
            message=message,
            sync_mode=ctx.sync_state.mode if ctx.sync_state else None,
            since=ctx.sync_state.since if ctx.sync_state else None,
        )
        ctx.logger.info("Stage finished", status=str(status), summary=message)
        return StageOutcome(
            meta.name,
            sequence,
            status,
            message=message,
            report=report,
            run_id=run_id,
            began_at=began_at,
            finished_at=_now(),
        )

    @staticmethod
    def _pipeline_status(outcomes: list[StageOutcome], cancel: threading.Event, failed: str | None) -> PipelineStatus:
        if failed is not None:
            return PipelineStatus.FAILED
        if cancel.is_set() or any(o.status == StageStatus.CANCELLED for o in outcomes):
            return PipelineStatus.CANCELLED
        return PipelineStatus.COMPLETED
