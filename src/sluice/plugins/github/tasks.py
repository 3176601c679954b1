# src/sluice/plugins/github/tasks.py
"""GitHub Actions stages: collect and extract workflow runs and their jobs.

    collect_runs   repos/<name>/actions/runs          -> _raw_github_api_runs
    extract_runs   _raw_github_api_runs               -> github_runs
    collect_jobs   github_runs (updated after since)  -> _raw_github_api_jobs
    extract_jobs   _raw_github_api_jobs               -> github_jobs

Job collection tolerates deleted runs (404) and flaky 5xx responses by
skipping the run; the stage is also marked skip_on_fail so a broken jobs
endpoint never blocks the rest of the pipeline.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from sluice.contracts.enums import Disposition
from sluice.contracts.errors import NotFoundError
from sluice.contracts.results import CollectorResult, ExtractorResult, FetchAttemptResult
from sluice.contracts.subtask import RAW_TABLE_PREFIX, SubTaskMeta
from sluice.core.store.cursor import CursorIterator
from sluice.core.store.database import ensure_utc
from sluice.core.store.sync_state import SyncState, WatermarkSource
from sluice.engine.collector import StatefulApiCollector
from sluice.engine.extractor import RawDataExtractor
from sluice.engine.pagination import TotalPagesPager, total_pages_from_link_header
from sluice.engine.strategy import CollectorStrategy
from sluice.plugins.github.models import (
    RAW_JOB_TABLE,
    RAW_RUN_TABLE,
    GithubOptions,
    SimpleRun,
    github_jobs,
    github_runs,
    parse_github_time,
)

if TYPE_CHECKING:
    from sluice.contracts.context import TaskContext
    from sluice.core.store.raw import RawDataRecord
    from sluice.plugins.clients.http import ApiClient

DOMAIN_CICD = "CICD"

JOBS_PAGE_SIZE = 100


def _task_data(ctx: TaskContext) -> tuple[GithubOptions, ApiClient]:
    return ctx.data["options"], ctx.data["client"]


def _cutoff(ctx: TaskContext, state: SyncState) -> datetime | None:
    """Later of the watermark and the run's time_after filter."""
    bounds = [t for t in (state.since, ctx.time_after) if t is not None]
    return max(bounds) if bounds else None


def _repo_filter(options: GithubOptions) -> dict[str, Any]:
    return {"connection_id": options.connection_id, "repo_id": options.github_id}


# === Runs ===


class RunsStrategy(CollectorStrategy[None]):
    """Workflow runs, newest first; paging stops once a whole page is not newer than cutoff."""

    def __init__(self, cutoff: datetime | None) -> None:
        super().__init__("repos/{{ params.name }}/actions/runs", items_path="workflow_runs")
        self.cutoff = cutoff

    def classify_response(self, result: FetchAttemptResult) -> Disposition:
        disposition = super().classify_response(result)
        if disposition != Disposition.CONTINUE or self.cutoff is None or not result.items:
            return disposition
        updated = [parse_github_time(item.get("updated_at")) for item in result.items]
        if all(t is not None and t <= self.cutoff for t in updated):
            return Disposition.ABORT_ITEM
        return disposition


def collect_runs(ctx: TaskContext) -> CollectorResult:
    options, client = _task_data(ctx)
    state = ctx.resolve_sync_state(
        WatermarkSource(github_runs, "github_updated_at", _repo_filter(options)),
        incremental_allowed=options.incremental,
    )
    return StatefulApiCollector(
        ctx,
        table=RAW_RUN_TABLE,
        client=client,
        strategy=RunsStrategy(_cutoff(ctx, state)),
        pager=TotalPagesPager(total_pages_from_link_header),
    ).execute()


def run_rows(options: GithubOptions, record: RawDataRecord) -> Iterator[dict[str, Any]]:
    for run in record.json():
        yield {
            "connection_id": options.connection_id,
            "id": run["id"],
            "repo_id": options.github_id,
            "name": run.get("name"),
            "status": run.get("status"),
            "conclusion": run.get("conclusion"),
            "head_sha": run.get("head_sha"),
            "head_branch": run.get("head_branch"),
            "event": run.get("event"),
            "run_number": run.get("run_number"),
            "run_attempt": run.get("run_attempt"),
            "github_created_at": parse_github_time(run.get("created_at")),
            "github_updated_at": parse_github_time(run.get("updated_at")),
        }


def extract_runs(ctx: TaskContext) -> ExtractorResult:
    options, _ = _task_data(ctx)
    return RawDataExtractor(
        ctx,
        raw_table=RAW_RUN_TABLE,
        product=github_runs,
        extract=lambda record: run_rows(options, record),
    ).execute()


# === Jobs ===


class JobsStrategy(CollectorStrategy[SimpleRun]):
    """Jobs of one workflow run. A 404 means the run was deleted since it was listed."""

    def __init__(self) -> None:
        super().__init__("repos/{{ params.name }}/actions/runs/{{ input.id }}/jobs", items_path="jobs")

    def skip_reason(self, result: FetchAttemptResult) -> str:
        if isinstance(result.error, NotFoundError):
            return "404 Not Found - run likely deleted"
        return super().skip_reason(result)


def runs_needing_jobs(ctx: TaskContext, options: GithubOptions, cutoff: datetime | None) -> CursorIterator[SimpleRun]:
    stmt = select(github_runs.c.id, github_runs.c.github_updated_at).where(
        github_runs.c.connection_id == options.connection_id,
        github_runs.c.repo_id == options.github_id,
    )
    if cutoff is not None:
        stmt = stmt.where(github_runs.c.github_updated_at > cutoff)
    return CursorIterator(
        ctx.db,
        stmt,
        lambda row: SimpleRun(id=row["id"], updated_at=ensure_utc(row["github_updated_at"])),
    )


def collect_jobs(ctx: TaskContext) -> CollectorResult:
    options, client = _task_data(ctx)
    state = ctx.resolve_sync_state(
        WatermarkSource(github_jobs, "run_updated_at", _repo_filter(options)),
        incremental_allowed=options.incremental,
    )
    return StatefulApiCollector(
        ctx,
        table=RAW_JOB_TABLE,
        client=client,
        strategy=JobsStrategy(),
        inputs=runs_needing_jobs(ctx, options, _cutoff(ctx, state)),
        pager=TotalPagesPager(total_pages_from_link_header),
        page_size=JOBS_PAGE_SIZE,
        identity=lambda run: {"id": run.id},
        input_state=lambda run: {"updated_at": run.updated_at},
    ).execute()


def job_rows(options: GithubOptions, record: RawDataRecord) -> Iterator[dict[str, Any]]:
    # Stamp jobs with the run as it was when they were fetched, never with a newer run
    state = record.input_state or {}
    run_updated = parse_github_time(state.get("updated_at"))
    for job in record.json():
        run_id = job.get("run_id", record.input["id"])
        yield {
            "connection_id": options.connection_id,
            "id": job["id"],
            "run_id": run_id,
            "repo_id": options.github_id,
            "name": job.get("name"),
            "status": job.get("status"),
            "conclusion": job.get("conclusion"),
            "head_sha": job.get("head_sha"),
            "runner_name": job.get("runner_name"),
            "started_at": parse_github_time(job.get("started_at")),
            "completed_at": parse_github_time(job.get("completed_at")),
            "run_updated_at": run_updated,
        }


def extract_jobs(ctx: TaskContext) -> ExtractorResult:
    options, _ = _task_data(ctx)
    return RawDataExtractor(
        ctx,
        raw_table=RAW_JOB_TABLE,
        product=github_jobs,
        extract=lambda record: job_rows(options, record),
    ).execute()


CollectRunsMeta = SubTaskMeta(
    name="collect_runs",
    entry_point=collect_runs,
    description="Collect workflow runs from the GitHub Actions API, supports time filter and incremental sync.",
    domain_types=(DOMAIN_CICD,),
    product_tables=(RAW_TABLE_PREFIX + RAW_RUN_TABLE,),
)

ExtractRunsMeta = SubTaskMeta(
    name="extract_runs",
    entry_point=extract_runs,
    description="Extract raw workflow runs into github_runs.",
    domain_types=(DOMAIN_CICD,),
    dependency_tables=(RAW_TABLE_PREFIX + RAW_RUN_TABLE,),
    product_tables=(github_runs.name,),
)

CollectJobsMeta = SubTaskMeta(
    name="collect_jobs",
    entry_point=collect_jobs,
    description="Collect jobs of every workflow run from the GitHub Actions API, supports time filter and incremental sync.",
    domain_types=(DOMAIN_CICD,),
    dependency_tables=(github_runs.name,),
    product_tables=(RAW_TABLE_PREFIX + RAW_JOB_TABLE,),
    skip_on_fail=True,
)

ExtractJobsMeta = SubTaskMeta(
    name="extract_jobs",
    entry_point=extract_jobs,
    description="Extract raw jobs into github_jobs, dropping placeholder timestamps.",
    domain_types=(DOMAIN_CICD,),
    dependency_tables=(RAW_TABLE_PREFIX + RAW_JOB_TABLE,),
    product_tables=(github_jobs.name,),
)

SUBTASKS = [CollectRunsMeta, ExtractRunsMeta, CollectJobsMeta, ExtractJobsMeta]
