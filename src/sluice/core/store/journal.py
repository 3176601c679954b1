# src/sluice/core/store/journal.py
"""Run journal: one row per stage per pipeline run in `subtask_runs`.

The runner writes a RUNNING row when a stage starts and completes it when the
stage ends. Skipped stages get a single terminal row. The sync state resolver
and the `history` command read it back.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import RowMapping, func, select, update

from sluice.contracts.enums import StageStatus, SyncMode
from sluice.core.canonical import canonical_json, stable_hash
from sluice.core.store.database import StoreDB, ensure_utc
from sluice.core.store.schema import subtask_runs_table


def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class JournalEntry:
    """One stage execution as recorded in subtask_runs."""

    run_id: str
    pipeline_run_id: str
    stage: str
    sequence: int
    params_hash: str
    status: StageStatus
    sync_mode: SyncMode | None
    since: datetime | None
    time_after: datetime | None
    began_at: datetime | None
    finished_at: datetime | None
    spent_seconds: float | None
    finished_records: int
    skipped_records: int
    is_collector: bool
    message: str | None
    error: str | None

    @classmethod
    def from_row(cls, row: RowMapping) -> JournalEntry:
        return cls(
            run_id=row["run_id"],
            pipeline_run_id=row["pipeline_run_id"],
            stage=row["stage"],
            sequence=row["sequence"],
            params_hash=row["params_hash"],
            status=StageStatus(row["status"]),
            sync_mode=SyncMode(row["sync_mode"]) if row["sync_mode"] else None,
            since=ensure_utc(row["since"]),
            time_after=ensure_utc(row["time_after"]),
            began_at=ensure_utc(row["began_at"]),
            finished_at=ensure_utc(row["finished_at"]),
            spent_seconds=row["spent_seconds"],
            finished_records=row["finished_records"],
            skipped_records=row["skipped_records"],
            is_collector=bool(row["is_collector"]),
            message=row["message"],
            error=row["error"],
        )


class Journal:
    """Reads and writes the subtask_runs table."""

    def __init__(self, db: StoreDB) -> None:
        self._db = db

    def begin(
        self,
        *,
        pipeline_run_id: str,
        stage: str,
        sequence: int,
        params: Mapping[str, Any],
        time_after: datetime | None = None,
        is_collector: bool = False,
    ) -> str:
        """Record a stage as RUNNING and return its run_id."""
        run_id = _generate_id()
        with self._db.connection() as conn:
            conn.execute(
                subtask_runs_table.insert().values(
                    run_id=run_id,
                    pipeline_run_id=pipeline_run_id,
                    stage=stage,
                    sequence=sequence,
                    params_hash=stable_hash(params),
                    params_json=canonical_json(params),
                    status=StageStatus.RUNNING.value,
                    time_after=time_after,
                    began_at=_now(),
                    is_collector=is_collector,
                )
            )
        return run_id

    def finish(
        self,
        run_id: str,
        *,
        status: StageStatus,
        finished_records: int = 0,
        skipped_records: int = 0,
        message: str | None = None,
        error: str | None = None,
        sync_mode: SyncMode | None = None,
        since: datetime | None = None,
    ) -> JournalEntry:
        """Complete a RUNNING row with its terminal status."""
        if not status.is_terminal:
            raise ValueError(f"finish() needs a terminal status, got {status}")
        finished_at = _now()
        with self._db.connection() as conn:
            began_at = conn.execute(
                select(subtask_runs_table.c.began_at).where(subtask_runs_table.c.run_id == run_id)
            ).scalar_one()
            began = ensure_utc(began_at)
            conn.execute(
                update(subtask_runs_table)
                .where(subtask_runs_table.c.run_id == run_id)
                .values(
                    status=status.value,
                    finished_at=finished_at,
                    spent_seconds=(finished_at - began).total_seconds() if began else None,
                    finished_records=finished_records,
                    skipped_records=skipped_records,
                    message=message,
                    error=error,
                    sync_mode=sync_mode.value if sync_mode else None,
                    since=since,
                )
            )
        entry = self.get(run_id)
        assert entry is not None  # row was read inside the transaction above
        return entry

    def record_skipped(
        self,
        *,
        pipeline_run_id: str,
        stage: str,
        sequence: int,
        params: Mapping[str, Any],
        message: str,
        time_after: datetime | None = None,
        is_collector: bool = False,
    ) -> str:
        """Record a stage that never ran."""
        run_id = _generate_id()
        with self._db.connection() as conn:
            conn.execute(
                subtask_runs_table.insert().values(
                    run_id=run_id,
                    pipeline_run_id=pipeline_run_id,
                    stage=stage,
                    sequence=sequence,
                    params_hash=stable_hash(params),
                    params_json=canonical_json(params),
                    status=StageStatus.SKIPPED.value,
                    time_after=time_after,
                    finished_at=_now(),
                    is_collector=is_collector,
                    message=message,
                )
            )
        return run_id

    def get(self, run_id: str) -> JournalEntry | None:
        with self._db.engine.connect() as conn:
            row = conn.execute(select(subtask_runs_table).where(subtask_runs_table.c.run_id == run_id)).mappings().first()
        return JournalEntry.from_row(row) if row is not None else None

    def latest_completed(self, stage: str, params: Mapping[str, Any]) -> JournalEntry | None:
        """Most recent COMPLETED run of stage for params, if any."""
        stmt = (
            select(subtask_runs_table)
            .where(
                subtask_runs_table.c.stage == stage,
                subtask_runs_table.c.params_hash == stable_hash(params),
                subtask_runs_table.c.status == StageStatus.COMPLETED.value,
            )
            .order_by(subtask_runs_table.c.finished_at.desc())
            .limit(1)
        )
        with self._db.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return JournalEntry.from_row(row) if row is not None else None

    def latest_pipeline_run_id(self) -> str | None:
        stmt = (
            select(subtask_runs_table.c.pipeline_run_id)
            .order_by(func.coalesce(subtask_runs_table.c.began_at, subtask_runs_table.c.finished_at).desc())
            .limit(1)
        )
        with self._db.engine.connect() as conn:
            return conn.execute(stmt).scalar_one_or_none()

    def list_runs(self, pipeline_run_id: str | None = None, *, limit: int = 100) -> list[JournalEntry]:
        """Journal rows ordered by stage sequence (one pipeline run) or newest first."""
        stmt = select(subtask_runs_table)
        if pipeline_run_id is not None:
            stmt = stmt.where(subtask_runs_table.c.pipeline_run_id == pipeline_run_id).order_by(subtask_runs_table.c.sequence)
        else:
            stmt = stmt.order_by(subtask_runs_table.c.finished_at.desc())
        with self._db.engine.connect() as conn:
            rows = conn.execute(stmt.limit(limit)).mappings().all()
        return [JournalEntry.from_row(row) for row in rows]
