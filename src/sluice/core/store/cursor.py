# src/sluice/core/store/cursor.py
"""Cursor Iterator: lazy, restartable input sequences over stored rows."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import RowMapping, Select, Table
from sqlalchemy.sql.elements import ColumnElement

if TYPE_CHECKING:
    from sluice.core.store.database import StoreDB

T = TypeVar("T")


def _primary_key_order(statement: Select[Any]) -> list[ColumnElement[Any]]:
    columns: list[ColumnElement[Any]] = []
    for from_ in statement.get_final_froms():
        if isinstance(from_, Table):
            columns.extend(from_.primary_key.columns)
    return columns


class CursorIterator(Generic[T]):
    """Finite sequence of typed inputs read from a SELECT.

    Each iter() re-executes the statement on a fresh connection, so the same
    CursorIterator can be consumed again (a second collector pass, a retry of
    the stage) and yields the rows as they are at that moment. Rows are
    fetched in partitions of batch_size to bound memory.

    Ordering is always deterministic: order_by if given, otherwise the
    primary key of the selected table. Pass order_by=() to keep an ORDER BY
    already present on the statement.

    Example:
        runs = CursorIterator(
            db,
            select(github_runs.c.id).where(github_runs.c.repo_id == repo_id),
            lambda row: SimpleRun(id=row["id"]),
        )
        for run in runs:
            ...
    """

    def __init__(
        self,
        db: StoreDB,
        statement: Select[Any],
        factory: Callable[[RowMapping], T],
        *,
        order_by: Sequence[ColumnElement[Any]] | None = None,
        batch_size: int = 500,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if order_by is None:
            order_by = _primary_key_order(statement)
            if not order_by:
                raise ValueError("CursorIterator needs order_by when the statement has no primary-keyed table")
        self._db = db
        self._statement = statement.order_by(*order_by) if order_by else statement
        self._factory = factory
        self._batch_size = batch_size

    @property
    def statement(self) -> Select[Any]:
        return self._statement

    def __iter__(self) -> Iterator[T]:
        with self._db.engine.connect() as conn:
            result = conn.execution_options(yield_per=self._batch_size).execute(self._statement)
            for partition in result.mappings().partitions():
                for row in partition:
                    yield self._factory(row)
