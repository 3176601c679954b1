# src/sluice/plugins/github/plugin.py
"""pluggy registration of the GitHub Actions source."""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import MetaData

from sluice.contracts.subtask import SubTaskMeta, TaskSetup
from sluice.core.rate_limit import RateLimitRegistry
from sluice.plugins.clients.http import ApiClient
from sluice.plugins.github.models import GithubOptions, github_metadata
from sluice.plugins.github.tasks import SUBTASKS
from sluice.plugins.hookspecs import hookimpl

API_VERSION = "2022-11-28"


class GithubPlugin:
    """Built-in `github` source plugin."""

    name = "github"

    @hookimpl
    def sluice_get_subtasks(self) -> list[SubTaskMeta]:
        return list(SUBTASKS)

    @hookimpl
    def sluice_get_metadata(self) -> MetaData:
        return github_metadata

    @hookimpl
    def sluice_prepare_task(self, options: Mapping[str, Any], rate_limits: RateLimitRegistry) -> TaskSetup:
        opts = GithubOptions.from_dict(options)
        client = ApiClient(
            opts.endpoint,
            headers={
                "Authorization": f"Bearer {opts.token.get_secret_value()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            },
            limiter=rate_limits.get_limiter(self.name),
        )
        return TaskSetup(
            params=opts.params,
            data={"options": opts, "client": client},
            closers=[client.close],
        )
