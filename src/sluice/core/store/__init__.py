"""Persistence: store database, raw pages, run journal, cursors and sync state."""

from sluice.core.store.cursor import CursorIterator
from sluice.core.store.database import StoreDB, ensure_utc
from sluice.core.store.journal import Journal, JournalEntry
from sluice.core.store.raw import RawDataRecord, RawDataStore
from sluice.core.store.schema import metadata, raw_table, raw_table_name, subtask_runs_table
from sluice.core.store.sync_state import SyncState, SyncStateResolver, WatermarkSource

__all__ = [
    "CursorIterator",
    "Journal",
    "JournalEntry",
    "RawDataRecord",
    "RawDataStore",
    "StoreDB",
    "SyncState",
    "SyncStateResolver",
    "WatermarkSource",
    "ensure_utc",
    "metadata",
    "raw_table",
    "raw_table_name",
    "subtask_runs_table",
]
