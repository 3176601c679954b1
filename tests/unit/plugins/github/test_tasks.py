"""Tests for the GitHub Actions stages, unit and end to end."""

from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import respx
from sqlalchemy import select

from sluice.contracts.config import RuntimeConfig
from sluice.contracts.enums import Disposition, PipelineStatus, StageStatus, StatusClass, SyncMode
from sluice.contracts.results import FetchAttemptResult
from sluice.core.config import RateLimitSettings
from sluice.core.rate_limit import RateLimitRegistry
from sluice.core.store import RawDataRecord, StoreDB, ensure_utc
from sluice.engine.runner import PipelineRunner
from sluice.plugins.github import GithubOptions, GithubPlugin, github_jobs, github_metadata, github_runs
from sluice.plugins.github.tasks import RunsStrategy, job_rows, run_rows
from sluice.plugins.registry import SubTaskRegistry
from tests.helpers import FAST_RETRY, GITHUB_OPTIONS, PARAMS

RUNS_PATH = "/repos/octo/repo/actions/runs"
JOBS_ROUTE = r"^/repos/octo/repo/actions/runs/(\d+)/jobs$"


def _run(run_id: int, updated: str) -> dict[str, Any]:
    return {
        "id": run_id,
        "name": "CI",
        "status": "completed",
        "conclusion": "success",
        "head_sha": f"sha{run_id}",
        "head_branch": "main",
        "event": "push",
        "run_number": run_id,
        "run_attempt": 1,
        "created_at": updated,
        "updated_at": updated,
    }


def _job(job_id: int, run_id: int, started_at: str = "2024-01-02T00:00:00Z") -> dict[str, Any]:
    return {
        "id": job_id,
        "run_id": run_id,
        "name": "build",
        "status": "completed",
        "conclusion": "success",
        "head_sha": f"sha{run_id}",
        "runner_name": "ubuntu-latest",
        "started_at": started_at,
        "completed_at": "2024-01-02T00:05:00Z",
    }


def _record(data: str, input: Any = None, input_state: Any = None) -> RawDataRecord:
    return RawDataRecord(
        params=PARAMS,
        input=input,
        page=1,
        data=data.encode(),
        url=None,
        created_at=datetime(2024, 1, 1, tzinfo=UTC),
        input_state=input_state,
    )


class TestRunsStrategy:
    def _page(self, *updated: str) -> FetchAttemptResult:
        return FetchAttemptResult(
            item=None,
            item_key=None,
            page=1,
            url="https://api.test/repos/octo/repo/actions/runs",
            status_class=StatusClass.SUCCESS,
            status_code=200,
            items=tuple(_run(i, t) for i, t in enumerate(updated)),
        )

    def test_stops_once_page_is_older_than_cutoff(self) -> None:
        strategy = RunsStrategy(datetime(2024, 2, 1, tzinfo=UTC))

        assert strategy.classify_response(self._page("2024-01-10T00:00:00Z", "2024-02-01T00:00:00Z")) == Disposition.ABORT_ITEM

    def test_continues_while_page_has_newer_runs(self) -> None:
        strategy = RunsStrategy(datetime(2024, 2, 1, tzinfo=UTC))

        assert strategy.classify_response(self._page("2024-02-03T00:00:00Z", "2024-01-10T00:00:00Z")) == Disposition.CONTINUE

    def test_no_cutoff(self) -> None:
        assert RunsStrategy(None).classify_response(self._page("2020-01-01T00:00:00Z")) == Disposition.CONTINUE

    def test_url(self) -> None:
        assert RunsStrategy(None).url_template == "repos/{{ params.name }}/actions/runs"


class TestRowMapping:
    def test_run_rows(self) -> None:
        options = GithubOptions.from_dict(GITHUB_OPTIONS)

        rows = list(run_rows(options, _record('[{"id": 7, "updated_at": "2024-01-02T00:00:00Z"}]')))

        assert rows[0]["connection_id"] == 1
        assert rows[0]["repo_id"] == 42
        assert rows[0]["github_updated_at"] == datetime(2024, 1, 2, tzinfo=UTC)
        assert rows[0]["name"] is None

    def test_job_rows_drop_placeholder_times(self) -> None:
        options = GithubOptions.from_dict(GITHUB_OPTIONS)
        payload = '[{"id": 101, "started_at": "0001-01-01T00:00:00Z", "completed_at": null}]'
        record = _record(payload, input={"id": 11}, input_state={"updated_at": "2024-01-03T00:00:00+00:00"})

        rows = list(job_rows(options, record))

        assert rows[0]["run_id"] == 11
        assert rows[0]["started_at"] is None
        assert rows[0]["completed_at"] is None
        assert rows[0]["run_updated_at"] == datetime(2024, 1, 3, tzinfo=UTC)

    def test_job_rows_without_recorded_run_state(self) -> None:
        options = GithubOptions.from_dict(GITHUB_OPTIONS)

        rows = list(job_rows(options, _record('[{"id": 101}]', input={"id": 11})))

        assert rows[0]["run_updated_at"] is None


@pytest.fixture
def github(db: StoreDB) -> Iterator[tuple[PipelineRunner, dict[str, Any]]]:
    db.create_all(github_metadata)
    plugin = GithubPlugin()
    with RateLimitRegistry(RateLimitSettings(enabled=False)) as rate_limits:
        setup = plugin.sluice_prepare_task(GITHUB_OPTIONS, rate_limits)
        runner = PipelineRunner(
            SubTaskRegistry(plugin.sluice_get_subtasks()),
            db,
            config=RuntimeConfig(retry=FAST_RETRY, max_workers=2),
        )
        try:
            yield runner, setup
        finally:
            setup.close()


def _jobs_upstream(request: httpx.Request) -> httpx.Response:
    run_id = int(request.url.path.split("/")[-2])
    if run_id == 12:
        return httpx.Response(404, json={"message": "Not Found"})
    return httpx.Response(200, json={"total_count": 1, "jobs": [_job(run_id * 10, run_id)]})


def _rows(db: StoreDB, table: Any) -> list[Any]:
    with db.engine.connect() as conn:
        return list(conn.execute(select(table).order_by(table.c.id)))


class TestGithubPipeline:
    @respx.mock
    def test_full_then_incremental(self, db: StoreDB, github: tuple[PipelineRunner, dict[str, Any]]) -> None:
        runner, setup = github
        runs_route = respx.get(path=RUNS_PATH).mock(
            return_value=httpx.Response(
                200,
                json={"total_count": 2, "workflow_runs": [_run(12, "2024-01-03T00:00:00Z"), _run(11, "2024-01-02T00:00:00Z")]},
            )
        )
        jobs_route = respx.get(path__regex=JOBS_ROUTE).mock(side_effect=_jobs_upstream)

        first = runner.run(setup.params, setup.data)

        assert first.status == PipelineStatus.COMPLETED
        assert first.statuses() == {
            "collect_runs": StageStatus.COMPLETED,
            "extract_runs": StageStatus.COMPLETED,
            "collect_jobs": StageStatus.COMPLETED,
            "extract_jobs": StageStatus.COMPLETED,
        }
        assert "run likely deleted" in first.outcome("collect_jobs").message
        assert [row.id for row in _rows(db, github_runs)] == [11, 12]
        jobs = _rows(db, github_jobs)
        assert [(row.id, row.run_id) for row in jobs] == [(110, 11)]
        assert ensure_utc(jobs[0].run_updated_at) == datetime(2024, 1, 2, tzinfo=UTC)
        assert jobs_route.call_count == 2

        runs_route.mock(
            return_value=httpx.Response(
                200,
                json={
                    "total_count": 3,
                    "workflow_runs": [
                        _run(13, "2024-02-01T00:00:00Z"),
                        _run(12, "2024-01-03T00:00:00Z"),
                        _run(11, "2024-01-02T00:00:00Z"),
                    ],
                },
            )
        )

        second = runner.run(setup.params, setup.data)

        assert second.status == PipelineStatus.COMPLETED
        collect_jobs = runner.journal.get(second.outcome("collect_jobs").run_id)
        assert collect_jobs is not None
        assert collect_jobs.sync_mode == SyncMode.INCREMENTAL
        assert collect_jobs.since == datetime(2024, 1, 2, tzinfo=UTC)
        # Run 11 is not newer than the watermark, so only 12 and 13 were asked for jobs again
        requested = sorted(int(call.request.url.path.split("/")[-2]) for call in jobs_route.calls)
        assert requested == [11, 12, 12, 13]
        assert [(row.id, row.run_id) for row in _rows(db, github_jobs)] == [(110, 11), (130, 13)]

    @respx.mock
    def test_runs_failure_fails_pipeline(self, github: tuple[PipelineRunner, dict[str, Any]]) -> None:
        runner, setup = github
        respx.get(path=RUNS_PATH).mock(return_value=httpx.Response(401, json={"message": "Bad credentials"}))

        result = runner.run(setup.params, setup.data)

        assert result.status == PipelineStatus.FAILED
        assert result.failed_stage == "collect_runs"
        assert "HTTP 401" in result.outcome("collect_runs").message
        assert result.outcome("extract_runs").message == "upstream stage collect_runs failed"

    @respx.mock
    def test_time_after_filters_runs_for_jobs(self, db: StoreDB, github: tuple[PipelineRunner, dict[str, Any]]) -> None:
        runner, setup = github
        respx.get(path=RUNS_PATH).mock(
            return_value=httpx.Response(
                200,
                json={"workflow_runs": [_run(13, "2024-02-01T00:00:00Z"), _run(11, "2024-01-02T00:00:00Z")]},
            )
        )
        jobs_route = respx.get(path__regex=JOBS_ROUTE).mock(side_effect=_jobs_upstream)

        result = runner.run(setup.params, setup.data, time_after=datetime(2024, 1, 15, tzinfo=UTC))

        assert result.status == PipelineStatus.COMPLETED
        assert [int(call.request.url.path.split("/")[-2]) for call in jobs_route.calls] == [13]

    @respx.mock
    def test_run_skipped_after_update_is_fetched_on_next_run(
        self, db: StoreDB, github: tuple[PipelineRunner, dict[str, Any]]
    ) -> None:
        runner, setup = github
        failing: set[int] = set()
        requested: list[int] = []

        def jobs_upstream(request: httpx.Request) -> httpx.Response:
            run_id = int(request.url.path.split("/")[-2])
            requested.append(run_id)
            if run_id in failing:
                return httpx.Response(503, json={"message": "Service Unavailable"})
            return httpx.Response(200, json={"total_count": 1, "jobs": [_job(run_id * 10, run_id)]})

        runs_route = respx.get(path=RUNS_PATH).mock(
            return_value=httpx.Response(
                200,
                json={"workflow_runs": [_run(12, "2024-01-03T00:00:00Z"), _run(11, "2024-01-02T00:00:00Z")]},
            )
        )
        respx.get(path__regex=JOBS_ROUTE).mock(side_effect=jobs_upstream)

        assert runner.run(setup.params, setup.data).status == PipelineStatus.COMPLETED
        assert sorted(requested) == [11, 12]

        # Run 11 is updated upstream but its jobs endpoint is down for the whole next run
        runs_route.mock(
            return_value=httpx.Response(
                200,
                json={"workflow_runs": [_run(11, "2024-03-01T00:00:00Z"), _run(12, "2024-01-03T00:00:00Z")]},
            )
        )
        failing.add(11)
        requested.clear()

        second = runner.run(setup.params, setup.data)

        assert second.status == PipelineStatus.COMPLETED
        assert second.outcome("collect_jobs").status == StageStatus.COMPLETED
        assert requested == [11, 11, 11]
        stamps = {row.id: ensure_utc(row.run_updated_at) for row in _rows(db, github_jobs)}
        # The stale job keeps the run time it was fetched under, so the watermark stays behind run 11
        assert stamps == {110: datetime(2024, 1, 2, tzinfo=UTC), 120: datetime(2024, 1, 3, tzinfo=UTC)}

        failing.clear()
        requested.clear()

        third = runner.run(setup.params, setup.data)

        assert third.status == PipelineStatus.COMPLETED
        collect_jobs = runner.journal.get(third.outcome("collect_jobs").run_id)
        assert collect_jobs is not None
        assert collect_jobs.sync_mode == SyncMode.INCREMENTAL
        assert collect_jobs.since == datetime(2024, 1, 3, tzinfo=UTC)
        assert requested == [11]
        stamps = {row.id: ensure_utc(row.run_updated_at) for row in _rows(db, github_jobs)}
        assert stamps[110] == datetime(2024, 3, 1, tzinfo=UTC)
