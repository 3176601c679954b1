# src/sluice/plugins/github/models.py
"""GitHub Actions options, product tables and record helpers."""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import Field, SecretStr, field_validator
from sqlalchemy import BigInteger, Column, DateTime, Integer, MetaData, String, Table

from sluice.plugins.config_base import SourceOptions

# Raw kinds; stored as _raw_<kind>
RAW_RUN_TABLE = "github_api_runs"
RAW_JOB_TABLE = "github_api_jobs"

github_metadata = MetaData()

github_runs = Table(
    "github_runs",
    github_metadata,
    Column("connection_id", BigInteger, primary_key=True),
    Column("id", BigInteger, primary_key=True),
    Column("repo_id", BigInteger, nullable=False, index=True),
    Column("name", String(255)),
    Column("status", String(64)),
    Column("conclusion", String(64)),
    Column("head_sha", String(64)),
    Column("head_branch", String(255)),
    Column("event", String(64)),
    Column("run_number", Integer),
    Column("run_attempt", Integer),
    Column("github_created_at", DateTime(timezone=True)),
    Column("github_updated_at", DateTime(timezone=True), index=True),
)

github_jobs = Table(
    "github_jobs",
    github_metadata,
    Column("connection_id", BigInteger, primary_key=True),
    Column("id", BigInteger, primary_key=True),
    Column("run_id", BigInteger, nullable=False, index=True),
    Column("repo_id", BigInteger, nullable=False, index=True),
    Column("name", String(255)),
    Column("status", String(64)),
    Column("conclusion", String(64)),
    Column("head_sha", String(64)),
    Column("runner_name", String(255)),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    # github_updated_at of the parent run when its jobs were fetched
    Column("run_updated_at", DateTime(timezone=True), index=True),
)


class GithubOptions(SourceOptions):
    """Options of the `github` source.

    Attributes:
        connection_id: Local identifier of the GitHub connection
        name: Repository as owner/repo
        github_id: Numeric repository id on GitHub
        endpoint: API base URL (GitHub Enterprise uses its own)
        token: Personal access or app token
        incremental: Allow incremental collection
    """

    connection_id: int = Field(ge=1)
    name: str = Field(pattern=r"^[^/\s]+/[^/\s]+$")
    github_id: int = Field(ge=1)
    endpoint: str = "https://api.github.com/"
    token: SecretStr
    incremental: bool = True

    @field_validator("endpoint")
    @classmethod
    def trailing_slash(cls, v: str) -> str:
        # httpx joins relative paths onto the last path segment otherwise
        return v if v.endswith("/") else v + "/"

    @property
    def params(self) -> dict[str, Any]:
        """Raw-store and journal namespace of this repository."""
        return {"connection_id": self.connection_id, "name": self.name}


@dataclass(frozen=True)
class SimpleRun:
    """Collector input for job collection.

    updated_at is the run's github_updated_at at the time its jobs were
    requested; it travels with the raw jobs and becomes their watermark.
    """

    id: int
    updated_at: datetime | None = None


def parse_github_time(value: Any) -> datetime | None:
    """ISO-8601 timestamp from the GitHub API as an aware UTC datetime.

    GitHub reports jobs that never started with placeholder timestamps
    ("0000-01-01T00:00:00Z", "0001-01-01T00:00:00Z"); those, null and anything
    unparsable become None.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.year <= 1:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
