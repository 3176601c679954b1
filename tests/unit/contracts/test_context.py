"""Tests for TaskContext."""

import threading
from datetime import UTC, datetime

import pytest

from sluice.contracts.enums import SyncMode


class TestTaskContext:
    def test_cancelled_follows_event(self, make_context) -> None:
        ctx = make_context()

        assert ctx.cancelled is False
        ctx.cancel_event.set()
        assert ctx.cancelled is True

    def test_progress_is_thread_safe(self, make_context) -> None:
        ctx = make_context()

        threads = [threading.Thread(target=lambda: [ctx.increment_progress() for _ in range(100)]) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert ctx.progress == 400

    def test_resolve_sync_state_needs_stage(self, make_context) -> None:
        from sluice.core.store import WatermarkSource, subtask_runs_table

        ctx = make_context(stage=None)

        with pytest.raises(RuntimeError, match="bound to a stage"):
            ctx.resolve_sync_state(WatermarkSource(subtask_runs_table, "finished_at"))

    def test_resolve_sync_state_is_remembered(self, make_context, db) -> None:
        from sluice.core.store import WatermarkSource, subtask_runs_table

        ctx = make_context()
        state = ctx.resolve_sync_state(WatermarkSource(subtask_runs_table, "finished_at"))

        # No completed run yet
        assert state.mode == SyncMode.FULL
        assert ctx.sync_state is state

    def test_full_sync_disables_incremental(self, make_context, journal) -> None:
        from sluice.contracts.enums import StageStatus
        from sluice.core.store import WatermarkSource, subtask_runs_table
        from tests.helpers import PARAMS

        run_id = journal.begin(pipeline_run_id="p0", stage="test_stage", sequence=1, params=PARAMS)
        journal.finish(run_id, status=StageStatus.COMPLETED)

        ctx = make_context(full_sync=True)
        state = ctx.resolve_sync_state(WatermarkSource(subtask_runs_table, "finished_at"))

        assert state.mode == SyncMode.FULL
        assert state.since is None

    def test_incremental_after_completed_run(self, make_context, journal) -> None:
        from sluice.contracts.enums import StageStatus
        from sluice.core.store import WatermarkSource, subtask_runs_table
        from tests.helpers import PARAMS

        run_id = journal.begin(pipeline_run_id="p0", stage="test_stage", sequence=1, params=PARAMS)
        entry = journal.finish(run_id, status=StageStatus.COMPLETED)

        ctx = make_context()
        state = ctx.resolve_sync_state(WatermarkSource(subtask_runs_table, "finished_at"))

        assert state.mode == SyncMode.INCREMENTAL
        assert state.since == entry.finished_at
        assert state.since.tzinfo is not None
        assert state.since <= datetime.now(UTC)
