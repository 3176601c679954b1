# src/sluice/engine/extractor.py
"""RawDataExtractor: raw pages -> product rows."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import Table
from sqlalchemy.exc import SQLAlchemyError

from sluice.contracts.errors import PersistenceError
from sluice.contracts.results import ExtractorResult
from sluice.core.store.schema import raw_table_name

if TYPE_CHECKING:
    from sluice.contracts.context import TaskContext
    from sluice.core.store.raw import RawDataRecord

ExtractFn = Callable[["RawDataRecord"], Iterable[Mapping[str, Any]]]


class RawDataExtractor:
    """Maps every raw record of the task's params into product rows.

    Rows are upserted by the product table's primary key, in batches, so
    re-running an extraction converges on the same rows. Cancellation is
    checked between raw records.

    Example:
        RawDataExtractor(ctx, raw_table="github_api_jobs", product=github_jobs, extract=job_rows).execute()
    """

    def __init__(
        self,
        ctx: TaskContext,
        *,
        raw_table: str,
        product: Table,
        extract: ExtractFn,
        params: Mapping[str, Any] | None = None,
        batch_size: int = 500,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._ctx = ctx
        self._raw_table = raw_table_name(raw_table)
        self._product = product
        self._extract = extract
        self._params = params if params is not None else ctx.params
        self._batch_size = batch_size

    def execute(self) -> ExtractorResult:
        start = time.perf_counter()
        log = self._ctx.logger.bind(raw_table=self._raw_table, product_table=self._product.name)
        self._create_product_table()

        read = 0
        written = 0
        cancelled = False
        batch: list[dict[str, Any]] = []

        for record in self._ctx.store.iterate(self._raw_table, self._params):
            if self._ctx.cancelled:
                cancelled = True
                break
            read += 1
            batch.extend(dict(row) for row in self._extract(record))
            if len(batch) >= self._batch_size:
                written += self._flush(batch)
                batch = []
        written += self._flush(batch)
        self._ctx.increment_progress(read)

        result = ExtractorResult(
            raw_table=self._raw_table,
            product_table=self._product.name,
            records_read=read,
            rows_written=written,
            cancelled=cancelled,
            elapsed_seconds=time.perf_counter() - start,
        )
        log.info("Extraction finished", records_read=read, rows_written=written, cancelled=cancelled)
        return result

    def _create_product_table(self) -> None:
        try:
            self._product.create(self._ctx.db.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot create {self._product.name}: {e}", table=self._product.name) from e

    def _flush(self, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0
        # Later rows for the same key win, as they would with sequential upserts
        keys = [c.name for c in self._product.primary_key.columns]
        unique = {tuple(row[k] for k in keys): row for row in rows}
        try:
            return self._ctx.db.upsert(self._product, list(unique.values()))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Cannot write {self._product.name}: {e}", table=self._product.name) from e
