# src/sluice/core/store/sync_state.py
"""Sync State Resolver: full vs incremental, and the watermark to resume from."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import Table, func, select

from sluice.contracts.enums import SyncMode
from sluice.core.store.database import ensure_utc

if TYPE_CHECKING:
    from sluice.core.store.database import StoreDB
    from sluice.core.store.journal import Journal

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WatermarkSource:
    """Where a stage's "updated" timestamps live.

    Attributes:
        table: Product table holding rows for the params
        updated_column: Column whose maximum is the watermark
        where: Equality filters selecting the rows that belong to the params
    """

    table: Table
    updated_column: str
    where: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        missing = [name for name in (self.updated_column, *self.where) if name not in self.table.c]
        if missing:
            raise ValueError(f"Columns {missing} are not in table {self.table.name}")


@dataclass(frozen=True)
class SyncState:
    """Resolved mode for one stage run.

    since is the watermark in UTC; it is None in FULL mode.
    """

    mode: SyncMode
    since: datetime | None
    params: Mapping[str, Any]
    reason: str = ""

    @property
    def is_incremental(self) -> bool:
        return self.mode == SyncMode.INCREMENTAL


def _same_instant(a: datetime | None, b: datetime | None) -> bool:
    return ensure_utc(a) == ensure_utc(b)


class SyncStateResolver:
    """Decides full vs incremental from the journal and the product rows.

    A stage runs incrementally only when all hold:
    - incremental sync is allowed for this invocation
    - the journal has a COMPLETED run of the same stage for the same params
    - that run used the same time_after filter
    - product rows for the params exist (so a watermark can be computed)

    Reads only; never writes.
    """

    def __init__(self, db: StoreDB, journal: Journal) -> None:
        self._db = db
        self._journal = journal

    def watermark(self, source: WatermarkSource) -> datetime | None:
        """Maximum updated value among the params' product rows, in UTC."""
        if not self._db.has_table(source.table.name):
            return None
        column = source.table.c[source.updated_column]
        stmt = select(func.max(column))
        for name, value in source.where.items():
            stmt = stmt.where(source.table.c[name] == value)
        with self._db.engine.connect() as conn:
            return ensure_utc(conn.execute(stmt).scalar_one_or_none())

    def resolve(
        self,
        params: Mapping[str, Any],
        *,
        stage: str,
        watermark: WatermarkSource,
        incremental_allowed: bool = True,
        time_after: datetime | None = None,
    ) -> SyncState:
        def full(reason: str) -> SyncState:
            logger.debug("Full sync", stage=stage, reason=reason)
            return SyncState(mode=SyncMode.FULL, since=None, params=params, reason=reason)

        if not incremental_allowed:
            return full("incremental sync not allowed")

        previous = self._journal.latest_completed(stage, params)
        if previous is None:
            return full("no completed run for these params")

        if not _same_instant(previous.time_after, time_after):
            return full("time_after filter changed since the last completed run")

        since = self.watermark(watermark)
        if since is None:
            return full(f"no rows in {watermark.table.name} for these params")

        return SyncState(
            mode=SyncMode.INCREMENTAL,
            since=since,
            params=params,
            reason=f"resuming after run {previous.run_id}",
        )
