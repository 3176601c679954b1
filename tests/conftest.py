# tests/conftest.py
"""Shared test fixtures and helpers.

Store fixtures use a file-backed SQLite database in tmp_path so collector
workers get real separate connections (WAL, busy timeout), as in production.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

from sluice.contracts.config import RuntimeConfig
from sluice.contracts.context import TaskContext
from sluice.contracts.subtask import SubTaskMeta
from sluice.core.rate_limit import NoOpLimiter
from sluice.core.store import Journal, RawDataStore, StoreDB
from sluice.plugins.clients.http import ApiClient
from tests.helpers import BASE_URL, FAST_RETRY, PARAMS


@pytest.fixture
def db(tmp_path) -> Iterator[StoreDB]:
    store_db = StoreDB(f"sqlite:///{tmp_path / 'store.db'}")
    yield store_db
    store_db.close()


@pytest.fixture
def store(db: StoreDB) -> RawDataStore:
    return RawDataStore(db)


@pytest.fixture
def journal(db: StoreDB) -> Journal:
    return Journal(db)


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(retry=FAST_RETRY, max_workers=3, page_size=100)


@pytest.fixture
def make_context(db: StoreDB, store: RawDataStore, journal: Journal, runtime_config: RuntimeConfig) -> Callable[..., TaskContext]:
    """Factory for a TaskContext bound to a stage named `test_stage`."""

    def factory(**overrides: Any) -> TaskContext:
        values: dict[str, Any] = {
            "db": db,
            "store": store,
            "journal": journal,
            "params": PARAMS,
            "config": runtime_config,
            "stage": SubTaskMeta(name="test_stage", entry_point=lambda ctx: None),
            "pipeline_run_id": "test-pipeline",
        }
        values.update(overrides)
        return TaskContext(**values)

    return factory


@pytest.fixture
def api_client() -> Iterator[ApiClient]:
    client = ApiClient(BASE_URL, headers={"Authorization": "Bearer test"}, limiter=NoOpLimiter())
    yield client
    client.close()


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
