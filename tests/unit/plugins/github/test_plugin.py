"""Tests for GithubPlugin hooks."""

import httpx
import respx

from sluice.core.config import RateLimitSettings
from sluice.core.rate_limit import RateLimitRegistry
from sluice.plugins.github import GithubOptions, GithubPlugin, github_metadata
from sluice.plugins.github.tasks import SUBTASKS
from tests.helpers import GITHUB_OPTIONS


class TestGithubPlugin:
    def test_subtasks_and_metadata(self) -> None:
        plugin = GithubPlugin()

        assert [meta.name for meta in plugin.sluice_get_subtasks()] == [meta.name for meta in SUBTASKS]
        assert set(plugin.sluice_get_metadata().tables) == {"github_runs", "github_jobs"}
        assert plugin.sluice_get_metadata() is github_metadata

    def test_collect_jobs_may_fail_without_aborting(self) -> None:
        metas = {meta.name: meta for meta in GithubPlugin().sluice_get_subtasks()}

        assert metas["collect_jobs"].skip_on_fail is True
        assert metas["collect_runs"].is_collector is True
        assert metas["extract_runs"].is_collector is False

    @respx.mock
    def test_prepare_task_builds_authenticated_client(self) -> None:
        route = respx.get("https://ghe.test/api/v3/rate_limit").mock(return_value=httpx.Response(200, json={}))
        with RateLimitRegistry(RateLimitSettings(enabled=False)) as rate_limits:
            setup = GithubPlugin().sluice_prepare_task({**GITHUB_OPTIONS, "endpoint": "https://ghe.test/api/v3"}, rate_limits)
            try:
                setup.data["client"].get("rate_limit")
            finally:
                setup.close()

        assert setup.params == {"connection_id": 1, "name": "octo/repo"}
        assert isinstance(setup.data["options"], GithubOptions)
        headers = route.calls.last.request.headers
        assert headers["Authorization"] == "Bearer ghp_secret"
        assert headers["Accept"] == "application/vnd.github+json"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"
        assert setup.closers == []
