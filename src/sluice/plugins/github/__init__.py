"""GitHub Actions data source: workflow runs and jobs."""

from sluice.plugins.github.models import GithubOptions, github_jobs, github_metadata, github_runs, parse_github_time
from sluice.plugins.github.plugin import GithubPlugin
from sluice.plugins.github.tasks import SUBTASKS

__all__ = [
    "SUBTASKS",
    "GithubOptions",
    "GithubPlugin",
    "github_jobs",
    "github_metadata",
    "github_runs",
    "parse_github_time",
]
