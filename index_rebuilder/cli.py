"""Command line entry point: rebuild search indexes one at a time."""

import asyncio
import logging
from typing import Optional

import click

from .config import Settings, settings
from .errors import ConnectivityError, UnknownEntityError
from .runtime import open_runtime
from .schemas.rebuild import ImportMode, IndexDescriptor, RunReport
from .services.index_catalog import build_default_catalog
from .services.rebuild_pipeline import PipelineOptions

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _confirm_all(total: int) -> bool:
    click.secho("This command will rebuild ALL search indexes ONE AT A TIME:", fg="yellow")
    click.echo("  - Each index will be dropped, migrated, and re-imported sequentially")
    click.echo("  - Search will be unavailable for each model during its rebuild")
    click.echo("  - Other models remain searchable while one rebuilds")
    click.secho(f"Total records to re-index: {total}", fg="yellow")
    return click.confirm("Do you want to rebuild all indexes?", default=False)


def _confirm_one(descriptor: IndexDescriptor, record_count: int) -> bool:
    click.echo(f"Rebuilding {descriptor.entity_type}")
    click.echo(f"Index: {descriptor.index_name}")
    click.echo(f"Records: {record_count}")
    return click.confirm("Continue with rebuild?", default=True)


async def run_rebuild(
    config: Settings,
    options: PipelineOptions,
    model: Optional[str] = None,
    dry_run: bool = False,
    force: bool = False,
) -> RunReport:
    """Run one invocation and return its report."""
    catalog = build_default_catalog(config.index_suffix)

    # Resolve the name before any connection is opened
    if model is not None:
        try:
            catalog.find_by_short_name(model)
        except UnknownEntityError as exc:
            return RunReport(succeeded=False, error=exc.message)

    try:
        async with open_runtime(config, options, dry_run=dry_run, catalog=catalog) as orchestrator:
            if dry_run:
                return await orchestrator.dry_run(model)
            if model is not None:
                return await orchestrator.rebuild_entity(model, confirm=None if force else _confirm_one)
            return await orchestrator.rebuild_all(confirm=None if force else _confirm_all)
    except ConnectivityError as exc:
        return RunReport(succeeded=False, error=exc.message)


def _echo_report(report: RunReport, dry_run: bool) -> None:
    if dry_run and report.succeeded:
        click.echo("DRY RUN - The following would be rebuilt:")
        for entry in report.planned:
            click.echo(f"  {entry.entity_type}")
            click.echo(f"    1. Drop index: {entry.index_name}")
            click.echo("    2. Recreate missing indexes")
            click.echo(f"    3. Import {entry.record_count} {entry.entity_type} records")
        click.echo("No changes made (dry run mode)")
        return

    for outcome in report.outcomes:
        if outcome.succeeded:
            note = " (queue drain unconfirmed)" if outcome.unconfirmed else ""
            click.secho(
                f"✓ {outcome.entity_type}: {outcome.records_processed} records in {outcome.duration:.1f}s{note}",
                fg="green",
            )
        else:
            click.secho(f"✗ {outcome.entity_type}: {outcome.failure_reason}", fg="red")

    if report.cancelled:
        click.echo("Operation cancelled.")
    elif report.succeeded:
        click.secho(f"✓ Rebuild finished. Total time: {report.duration:.1f}s", fg="green")
    else:
        click.secho(f"✗ {report.error}", fg="red", err=True)


@click.command("rebuild-search-indexes")
@click.option(
    "--model",
    default=None,
    help="Rebuild only a specific model (e.g., Invoice, Client)",
)
@click.option("--force", is_flag=True, help="Force the operation without confirmation")
@click.option("--dry-run", is_flag=True, help="Show what would be done without making changes")
@click.option(
    "--chunk-size",
    type=click.IntRange(min=1),
    default=None,
    help="Records per import batch or job (default: REBUILD_CHUNK_SIZE, 500)",
)
@click.option("--wait", is_flag=True, help="Wait for queued import jobs to drain before moving on")
@click.option("--no-queue", is_flag=True, help="Import synchronously instead of dispatching jobs")
@click.option(
    "--max-wait",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to wait for a queue to drain (default: REBUILD_MAX_WAIT_SECONDS, 600)",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    help="Logging verbosity",
)
def main(
    model: Optional[str],
    force: bool,
    dry_run: bool,
    chunk_size: Optional[int],
    wait: bool,
    no_queue: bool,
    max_wait: Optional[float],
    log_level: str,
) -> None:
    """Rebuild search indexes one at a time to minimize production impact.

    \b
    Examples:
        rebuild-search-indexes --dry-run
        rebuild-search-indexes --model Invoice --force
        rebuild-search-indexes --force --wait --chunk-size 1000
        rebuild-search-indexes --no-queue
    """
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    options = PipelineOptions(
        chunk_size=chunk_size or settings.rebuild_chunk_size,
        mode=ImportMode.SYNCHRONOUS if no_queue else ImportMode.QUEUED,
        wait=wait,
        queue_name=settings.queue_name,
        max_wait=settings.rebuild_max_wait_seconds if max_wait is None else max_wait,
    )

    report = asyncio.run(run_rebuild(settings, options, model=model, dry_run=dry_run, force=force))
    _echo_report(report, dry_run)

    if not report.succeeded:
        raise SystemExit(1)
