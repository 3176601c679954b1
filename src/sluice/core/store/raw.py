# src/sluice/core/store/raw.py
"""Raw Data Store: idempotent keyed persistence of fetched pages.

Every record is keyed by (table, params, input, page). Writing the same key
again replaces the record, so re-collecting an item never duplicates it.
Readers see a record either before or after a replace, never half of it.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import Table, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from sluice.contracts.errors import PersistenceError
from sluice.core.canonical import canonical_json, stable_hash
from sluice.core.store.cursor import CursorIterator
from sluice.core.store.database import StoreDB, ensure_utc
from sluice.core.store.schema import raw_table, raw_table_name

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RawDataRecord:
    """One persisted page.

    params and input are the decoded canonical JSON they were stored as, so
    an input dataclass comes back as a plain dict. input_state is whatever
    the collector recorded about the input at fetch time (None if nothing).
    """

    params: dict[str, Any]
    input: Any
    page: int
    data: bytes
    url: str | None
    created_at: datetime
    input_state: Any = None

    def json(self) -> Any:
        """Decode the stored payload."""
        return json.loads(self.data)


def _record_from_row(row: Mapping[str, Any]) -> RawDataRecord:
    created_at = ensure_utc(row["created_at"])
    assert created_at is not None  # column is NOT NULL
    return RawDataRecord(
        params=json.loads(row["params"]),
        input=json.loads(row["input"]),
        page=row["page"],
        data=row["data"],
        url=row["url"],
        created_at=created_at,
        input_state=json.loads(row["input_state"]) if row["input_state"] is not None else None,
    )


class RawDataStore:
    """Keyed storage of raw pages in `_raw_<kind>` tables.

    Tables are created on first use. Every storage failure is raised as
    PersistenceError and is fatal for the calling stage.
    """

    def __init__(self, db: StoreDB) -> None:
        self._db = db
        self._lock = threading.Lock()
        self._ready: set[str] = set()

    @property
    def db(self) -> StoreDB:
        return self._db

    def ensure_table(self, name: str) -> Table:
        """Define and create the raw table if this store has not done so yet."""
        name = raw_table_name(name)
        with self._lock:
            table = raw_table(name)
            if name not in self._ready:
                try:
                    table.create(self._db.engine, checkfirst=True)
                except SQLAlchemyError as e:
                    raise PersistenceError(f"Cannot create raw table {name}: {e}", table=name) from e
                self._ready.add(name)
        return table

    def upsert(
        self,
        table: str,
        params: Mapping[str, Any],
        input: Any,
        page: int,
        payload: bytes,
        *,
        url: str | None = None,
        input_state: Any = None,
    ) -> None:
        """Write one page, replacing the record with the same key if any.

        input_state is stored beside the page but is not part of the key, so
        a later fetch of the same input replaces it together with the page.
        """
        if page < 1:
            raise ValueError(f"page ordinals are 1-based, got {page}")
        target = self.ensure_table(table)
        row = {
            "params_hash": stable_hash(params),
            "params": canonical_json(params),
            "input_hash": stable_hash(input),
            "input": canonical_json(input),
            "input_state": canonical_json(input_state) if input_state is not None else None,
            "page": page,
            "url": url,
            "data": payload,
            "created_at": datetime.now(UTC),
        }
        try:
            self._db.upsert(target, [row], key_columns=("params_hash", "input_hash", "page"))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot write page {page} to {target.name}: {e}", table=target.name) from e

    def iterate(self, table: str, params: Mapping[str, Any], *, batch_size: int = 500) -> Iterator[RawDataRecord]:
        """Lazily yield every record for params, ordered by input then page."""
        name = raw_table_name(table)
        if not self._db.has_table(name):
            return iter(())
        target = self.ensure_table(name)
        stmt = select(target).where(target.c.params_hash == stable_hash(params))
        records = CursorIterator(
            self._db,
            stmt,
            _record_from_row,
            order_by=(target.c.input_hash, target.c.page),
            batch_size=batch_size,
        )
        return iter(records)

    def count(self, table: str, params: Mapping[str, Any] | None = None, input: Any = None) -> int:
        """Number of records, optionally narrowed to params and to one input."""
        name = raw_table_name(table)
        if not self._db.has_table(name):
            return 0
        target = self.ensure_table(name)
        stmt = select(func.count()).select_from(target)
        if params is not None:
            stmt = stmt.where(target.c.params_hash == stable_hash(params))
        if input is not None:
            stmt = stmt.where(target.c.input_hash == stable_hash(input))
        try:
            with self._db.engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot count {name}: {e}", table=name) from e

    def prune_pages(self, table: str, params: Mapping[str, Any], input: Any, keep_through: int) -> int:
        """Delete pages after `keep_through` for one key.

        Called when an item's pagination ends, so a sequence that shrank
        since an earlier run leaves no stale trailing pages.

        Returns:
            Number of records deleted
        """
        target = self.ensure_table(table)
        stmt = delete(target).where(
            target.c.params_hash == stable_hash(params),
            target.c.input_hash == stable_hash(input),
            target.c.page > keep_through,
        )
        try:
            with self._db.connection() as conn:
                deleted = conn.execute(stmt).rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot prune {target.name}: {e}", table=target.name) from e
        if deleted:
            logger.debug("Pruned stale raw pages", table=target.name, keep_through=keep_through, deleted=deleted)
        return deleted

    def delete(self, table: str, params: Mapping[str, Any]) -> int:
        """Delete every record for params.

        The collector calls this when a full sync is forced, so pages of
        inputs that no longer exist upstream do not linger in the raw table.
        """
        name = raw_table_name(table)
        if not self._db.has_table(name):
            return 0
        target = self.ensure_table(name)
        try:
            with self._db.connection() as conn:
                return conn.execute(delete(target).where(target.c.params_hash == stable_hash(params))).rowcount
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot delete from {name}: {e}", table=name) from e
