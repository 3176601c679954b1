"""Stage metadata registered by data-source plugins."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sluice.contracts.context import TaskContext
    from sluice.contracts.results import StageReport

# Raw tables written by collectors share this prefix
RAW_TABLE_PREFIX = "_raw_"

EntryPoint = Callable[["TaskContext"], "StageReport | None"]


@dataclass(frozen=True)
class SubTaskMeta:
    """Static description of one pipeline stage.

    The runner never calls into a plugin except through entry_point. Ordering
    between stages comes only from the table relation: a stage that lists a
    table in dependency_tables runs after every stage that lists it in
    product_tables.

    Attributes:
        name: Unique stage name
        entry_point: Callable run with the stage's TaskContext
        enabled_by_default: Whether the stage runs when no explicit selection is made
        description: Human readable summary
        domain_types: Downstream domains the stage contributes to
        dependency_tables: Tables the stage reads
        product_tables: Tables the stage writes
        skip_on_fail: If True, a failure of this stage does not abort the pipeline
    """

    name: str
    entry_point: EntryPoint
    enabled_by_default: bool = True
    description: str = ""
    domain_types: tuple[str, ...] = ()
    dependency_tables: tuple[str, ...] = ()
    product_tables: tuple[str, ...] = ()
    skip_on_fail: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("SubTaskMeta.name must not be empty")

    @property
    def is_collector(self) -> bool:
        """A collector is a stage that writes raw tables."""
        return any(table.startswith(RAW_TABLE_PREFIX) for table in self.product_tables)


@dataclass
class TaskSetup:
    """What a data-source plugin prepares before its stages run.

    Attributes:
        params: Connection identity and entity selectors; namespaces raw
            records and journal rows
        data: Plugin-scoped objects handed to every stage (options, client)
        closers: Called once the pipeline run is over, in reverse order
    """

    params: dict[str, Any]
    data: dict[str, Any] = field(default_factory=dict)
    closers: list[Callable[[], None]] = field(default_factory=list)

    def close(self) -> None:
        while self.closers:
            self.closers.pop()()
