# src/sluice/cli.py
"""Sluice Command Line Interface.

Entry point for the sluice CLI tool.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import typer
from pydantic import ValidationError

from sluice import __version__
from sluice.core.config import SluiceSettings, load_settings
from sluice.core.dag import StageGraphError

if TYPE_CHECKING:
    from sluice.contracts.results import PipelineResult
    from sluice.plugins.manager import PluginManager

__all__ = ["app"]

# Module-level singleton for plugin manager
_plugin_manager_cache: PluginManager | None = None


def _get_plugin_manager() -> PluginManager:
    """Get initialized plugin manager (singleton).

    Returns:
        PluginManager with built-in and entry-point plugins registered
    """
    global _plugin_manager_cache

    from sluice.plugins.manager import PluginManager

    if _plugin_manager_cache is None:
        manager = PluginManager()
        manager.register_builtin_plugins()
        manager.load_entrypoints()
        _plugin_manager_cache = manager
    return _plugin_manager_cache


app = typer.Typer(
    name="sluice",
    help="Sluice: stateful collection of paginated APIs.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"sluice version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from a .env file without overriding existing ones.

    Raises:
        typer.Exit: If an explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(f"Error: .env file not found: {env_file}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(False, "--no-dotenv", help="Skip loading .env file."),
    env_file: Path | None = typer.Option(None, "--env-file", help="Path to .env file (skips automatic search)."),
) -> None:
    """Sluice: stateful collection of paginated APIs."""
    if not no_dotenv:
        _load_dotenv(env_file=env_file)


def _load(settings: Path) -> SluiceSettings:
    """Load settings or exit with a readable error."""
    try:
        return load_settings(settings.expanduser())
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None


def _configure_logging(config: SluiceSettings, *, verbose: bool, json_logs: bool) -> None:
    from sluice.core.logging import configure_logging

    level = "DEBUG" if verbose else config.logging.level
    configure_logging(json_output=json_logs or config.logging.json_output, level=level)


def _selected_sources(config: SluiceSettings, manager: PluginManager, source: str | None) -> list[str]:
    names = [source] if source else list(config.sources)
    if not names:
        typer.echo("Error: no sources configured (add a `sources:` section to the settings file)", err=True)
        raise typer.Exit(1)
    unknown = [name for name in names if name not in manager.source_names]
    if unknown:
        typer.echo(f"Error: unknown source(s): {', '.join(unknown)}. Available: {', '.join(manager.source_names)}", err=True)
        raise typer.Exit(1)
    return names


def _print_result(source: str, result: PipelineResult) -> None:
    typer.echo(f"{source}: pipeline {result.pipeline_run_id} {result.status}")
    for outcome in result.stages:
        line = f"  {outcome.sequence:>2}. {outcome.name:<24} {outcome.status:<10}"
        if outcome.message:
            line += f" {outcome.message}"
        typer.echo(line)


SettingsOption = typer.Option(Path("settings.yaml"), "--settings", "-s", help="Path to settings YAML file.")
SourceOption = typer.Option(None, "--source", help="Only this source plugin (default: every configured source).")


@app.command()
def run(
    settings: Path = SettingsOption,
    source: str | None = SourceOption,
    stage: list[str] | None = typer.Option(None, "--stage", help="Run only these stages (repeatable)."),
    full_sync: bool = typer.Option(False, "--full-sync", help="Ignore watermarks and collect everything."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Output structured JSON logs."),
) -> None:
    """Run the pipeline of every configured source."""
    from sluice.contracts.config import RuntimeConfig
    from sluice.contracts.enums import PipelineStatus
    from sluice.core.logging import bound_log_context
    from sluice.core.rate_limit import RateLimitRegistry
    from sluice.core.store import StoreDB
    from sluice.engine.runner import PipelineRunner, cancel_on_signals
    from sluice.plugins.config_base import PluginConfigError

    config = _load(settings)
    _configure_logging(config, verbose=verbose, json_logs=json_logs)
    manager = _get_plugin_manager()
    sources = _selected_sources(config, manager, source)
    selected = stage or config.pipeline.stages or None
    runtime = RuntimeConfig.from_settings(config)
    failed = False

    with (
        StoreDB(config.database.url, echo=config.database.echo) as db,
        RateLimitRegistry(config.rate_limit) as rate_limits,
        cancel_on_signals() as cancel,
    ):
        for name in sources:
            db.create_all(*manager.metadata(name))
            try:
                setup = manager.prepare_task(name, config.sources.get(name, {}), rate_limits)
            except PluginConfigError as e:
                typer.echo(f"Error: {e}", err=True)
                raise typer.Exit(1) from None
            try:
                runner = PipelineRunner(manager.build_registry(name), db, config=runtime)
                with bound_log_context(source=name):
                    result = runner.run(
                        setup.params,
                        setup.data,
                        selected=selected,
                        time_after=config.pipeline.time_after,
                        full_sync=full_sync or config.pipeline.full_sync,
                        cancel_event=cancel,
                    )
            except StageGraphError as e:
                typer.echo(f"Pipeline graph error: {e}", err=True)
                raise typer.Exit(1) from None
            finally:
                setup.close()
            _print_result(name, result)
            failed = failed or result.status != PipelineStatus.COMPLETED

    if failed:
        raise typer.Exit(1)


@app.command()
def plan(
    settings: Path = SettingsOption,
    source: str | None = SourceOption,
    stage: list[str] | None = typer.Option(None, "--stage", help="Plan with only these stages selected."),
) -> None:
    """Print the stage order of each source and whether each stage would run."""
    from sluice.core.store import StoreDB
    from sluice.engine.runner import PipelineRunner

    config = _load(settings)
    manager = _get_plugin_manager()
    selected = stage or config.pipeline.stages or None
    db = StoreDB.in_memory()
    try:
        for name in _selected_sources(config, manager, source):
            try:
                stages = PipelineRunner(manager.build_registry(name), db).plan(selected)
            except StageGraphError as e:
                typer.echo(f"Pipeline graph error: {e}", err=True)
                raise typer.Exit(1) from None
            typer.echo(f"{name}:")
            for sequence, (meta, enabled) in enumerate(stages, start=1):
                state = "enabled" if enabled else "disabled"
                flags = " (skip on fail)" if meta.skip_on_fail else ""
                typer.echo(f"  {sequence:>2}. {meta.name:<24} {state}{flags}")
    finally:
        db.close()


@app.command()
def history(
    settings: Path = SettingsOption,
    pipeline_run_id: str | None = typer.Option(None, "--run", help="Pipeline run id (default: latest)."),
) -> None:
    """Print the journal of a pipeline run."""
    from sluice.core.store import Journal, StoreDB

    config = _load(settings)
    with StoreDB(config.database.url) as db:
        journal = Journal(db)
        run_id = pipeline_run_id or journal.latest_pipeline_run_id()
        if run_id is None:
            typer.echo("No pipeline runs recorded.")
            return
        entries = journal.list_runs(run_id)
        if not entries:
            typer.echo(f"Error: pipeline run not found: {run_id}", err=True)
            raise typer.Exit(1)

        typer.echo(f"Pipeline run {run_id}")
        for entry in entries:
            spent = f"{entry.spent_seconds:.1f}s" if entry.spent_seconds is not None else "-"
            mode = entry.sync_mode or "-"
            typer.echo(
                f"  {entry.sequence:>2}. {entry.stage:<24} {entry.status:<10} {mode:<12} {spent:>8}"
                f"  records={entry.finished_records} skipped={entry.skipped_records}"
            )
            if entry.message:
                typer.echo(f"      {entry.message}")


if __name__ == "__main__":
    app()
