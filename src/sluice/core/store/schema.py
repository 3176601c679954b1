# src/sluice/core/store/schema.py
"""SQLAlchemy table definitions for the sluice store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries and
compatibility with multiple database backends. Product tables of data-source
plugins live in the plugins' own MetaData objects.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from sluice.contracts.subtask import RAW_TABLE_PREFIX

# Shared metadata for the journal and every raw table
metadata = MetaData()

# === Run journal ===

subtask_runs_table = Table(
    "subtask_runs",
    metadata,
    Column("run_id", String(64), primary_key=True),
    Column("pipeline_run_id", String(64), nullable=False),
    Column("stage", String(128), nullable=False),
    Column("sequence", Integer, nullable=False),
    Column("params_hash", String(64), nullable=False),
    Column("params_json", Text, nullable=False),
    Column("status", String(32), nullable=False),
    Column("sync_mode", String(32)),
    Column("since", DateTime(timezone=True)),
    # The time_after filter in effect; incremental sync requires it unchanged
    Column("time_after", DateTime(timezone=True)),
    Column("began_at", DateTime(timezone=True)),
    Column("finished_at", DateTime(timezone=True)),
    Column("spent_seconds", Float),
    Column("finished_records", Integer, nullable=False, default=0),
    Column("skipped_records", Integer, nullable=False, default=0),
    Column("is_collector", Boolean, nullable=False, default=False),
    Column("message", Text),
    Column("error", Text),
)

Index("ix_subtask_runs_stage_params", subtask_runs_table.c.stage, subtask_runs_table.c.params_hash)
Index("ix_subtask_runs_pipeline", subtask_runs_table.c.pipeline_run_id)


# === Raw tables ===


def raw_table_name(kind: str) -> str:
    """Table name for one upstream resource kind (`jobs` -> `_raw_jobs`)."""
    if kind.startswith(RAW_TABLE_PREFIX):
        return kind
    return f"{RAW_TABLE_PREFIX}{kind}"


def raw_table(name: str) -> Table:
    """Get or define the raw table `name` on the shared metadata.

    Params and input are stored twice: as canonical JSON for readers and as
    its SHA-256 for the uniqueness key, so arbitrarily large inputs still
    index cheaply.
    """
    name = raw_table_name(name)
    existing = metadata.tables.get(name)
    if existing is not None:
        return existing
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("params_hash", String(64), nullable=False),
        Column("params", Text, nullable=False),
        Column("input_hash", String(64), nullable=False),
        Column("input", Text, nullable=False),
        # What the collector knew about the input when it fetched the page; not part of the key
        Column("input_state", Text),
        Column("page", Integer, nullable=False),
        Column("url", Text),
        Column("data", LargeBinary, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
        UniqueConstraint("params_hash", "input_hash", "page", name=f"uq_{name}_key"),
        Index(f"ix_{name}_params", "params_hash"),
    )
