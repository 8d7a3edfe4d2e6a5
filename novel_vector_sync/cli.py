"""
CLI commands for novel-vector-sync.

Provides the `nvs` command-line interface for configuration setup, status
checks, task inspection and manual maintenance.
"""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
import requests
from rich.console import Console
from rich.table import Table

from config.loader import ConfigurationError, ConfigurationLoader
from core.embeddings.hashing import HashingEmbedder
from core.models.config import GlobalSettings, SyncSettings
from core.models.storage import DocumentStatus, StorageResult
from core.storage.client import QdrantIndexStore
from core.storage.database import SyncDatabase
from core.sync.errors import TaskNotFoundError
from core.sync.event_log import ChangeEventLog
from core.sync.events import SyncTask, TaskStatus
from core.sync.task_queue import SyncTaskQueue
from novel_vector_sync.logging_setup import configure_logging

console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "yellow",
    TaskStatus.PROCESSING: "blue",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.ABANDONED: "magenta",
}


@click.group()
@click.version_option(version="1.0.0", prog_name="nvs")
@click.option(
    '--config', '-c', 'config_path',
    type=click.Path(dir_okay=False),
    help='Config file (default: ~/.novel-vector-sync/config.json)'
)
@click.pass_context
def main(ctx: click.Context, config_path: Optional[str]):
    """
    Novel Vector Sync CLI.

    Inspect and maintain the sync task queue and change event log.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@main.command()
@click.option('--force', '-f', is_flag=True, help='Overwrite existing configuration')
@click.option(
    '--qdrant-url',
    default="http://localhost:6333",
    help='Qdrant server URL, or ":memory:" for a local in-process index'
)
@click.option('--collection-name', help='Collection name (default: novel-knowledge)')
@click.option('--db-path', help='SQLite file for the event log and task queue')
@click.pass_context
def init(ctx: click.Context, force: bool, qdrant_url: str,
         collection_name: Optional[str], db_path: Optional[str]):
    """Write a configuration file, create the sync database and the Qdrant collection."""
    config_file = _config_file(ctx)

    if config_file.exists() and not force:
        console.print(f"[yellow]⚠️  {config_file} already exists. Use --force to overwrite.[/yellow]")
        return

    settings = SyncSettings()
    try:
        settings.qdrant.url = qdrant_url
        if collection_name:
            settings.qdrant.collection_name = collection_name
    except ValueError as e:
        console.print(f"[red]❌ Invalid option: {e}[/red]")
        sys.exit(1)
    if db_path:
        settings.database.path = db_path

    qdrant_available = False
    if settings.qdrant.is_local:
        console.print("[blue]Using a local in-process Qdrant index[/blue]")
    elif _check_qdrant_connection(qdrant_url):
        qdrant_available = True
        console.print(f"[green]✅ Qdrant connected at {qdrant_url}[/green]")
    else:
        console.print(f"[red]❌ Qdrant not available at {qdrant_url}[/red]")
        console.print("[yellow]⚠️  Continuing without Qdrant connection...[/yellow]")

    try:
        ConfigurationLoader().save(settings, config_file)
        asyncio.run(_init_database(settings.database.path))
    except Exception as e:
        console.print(f"[red]❌ Initialization failed: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Created {config_file}[/green]")
    console.print(f"[green]✅ Sync database ready at {settings.database.path}[/green]")

    if qdrant_available:
        result = asyncio.run(_init_collection(settings))
        if result.success:
            console.print(f"[green]✅ Collection '{settings.qdrant.collection_name}' ready[/green]")
        else:
            console.print(f"[yellow]⚠️  Could not create collection: {result.error}[/yellow]")


@main.command()
@click.option('--verbose', '-v', is_flag=True, help='Show detailed status information')
@click.pass_context
def status(ctx: click.Context, verbose: bool):
    """Check configuration, Qdrant and the task queue."""
    settings = _load_settings(ctx)

    table = Table(title="Novel Vector Sync Status")
    table.add_column("Component", style="cyan", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    table.add_row("Config", "[green]✅ Loaded[/green]", str(_config_file(ctx)))

    qdrant_url = settings.qdrant.url
    if settings.qdrant.is_local:
        qdrant_ok = True
        table.add_row("Qdrant", "[blue]Local[/blue]", "in-process index")
    else:
        qdrant_ok = _check_qdrant_connection(qdrant_url)
        if qdrant_ok:
            table.add_row("Qdrant", "[green]✅ Connected[/green]", qdrant_url)
            active, deprecated = asyncio.run(_index_summary(settings))
            table.add_row("  active documents", str(active), settings.qdrant.collection_name)
            table.add_row("  deprecated documents", str(deprecated), "awaiting purge")
        else:
            table.add_row("Qdrant", "[red]❌ Not available[/red]", qdrant_url)

    if verbose:
        table.add_row("Collection", f"[yellow]{settings.qdrant.collection_name}[/yellow]", "Qdrant collection")
        table.add_row(
            "Workers", f"[yellow]{settings.scheduler.worker_pool_size}[/yellow]",
            f"batch size {settings.scheduler.batch_size}, max retries {settings.scheduler.max_retries}"
        )

    database_ok = False
    try:
        counts, unprocessed = asyncio.run(_queue_summary(settings.database.path))
        database_ok = True
        table.add_row("Database", "[green]✅ Open[/green]", settings.database.path)
        for task_status, count in counts.items():
            style = STATUS_STYLES[task_status]
            table.add_row(f"  {task_status.value}", f"[{style}]{count}[/{style}]", "tasks")
        table.add_row("  unprocessed events", str(unprocessed), "awaiting task derivation")
    except Exception as e:
        table.add_row("Database", "[red]❌ Error[/red]", str(e))

    console.print(table)

    if qdrant_ok and database_ok:
        console.print("\n[green]🎉 All systems ready.[/green]")
    else:
        console.print("\n[yellow]⚠️  Some components need attention. See status above.[/yellow]")


@main.command()
@click.option(
    '--status', '-s', 'status_filter',
    type=click.Choice([s.value for s in TaskStatus], case_sensitive=False),
    help='Only show tasks in this status'
)
@click.option('--limit', '-n', default=20, show_default=True, help='Maximum tasks to show')
@click.pass_context
def tasks(ctx: click.Context, status_filter: Optional[str], limit: int):
    """List sync tasks, most recently updated first."""
    settings = _load_settings(ctx)
    task_status = TaskStatus(status_filter.upper()) if status_filter else None

    try:
        rows = asyncio.run(_list_tasks(settings.database.path, task_status, limit))
    except Exception as e:
        console.print(f"[red]❌ Failed to read tasks: {e}[/red]")
        sys.exit(1)

    if not rows:
        console.print("[dim]No tasks found[/dim]")
        return

    table = Table(title="Sync Tasks")
    table.add_column("ID", justify="right")
    table.add_column("Entity", style="cyan")
    table.add_column("Op")
    table.add_column("Version", justify="right")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Updated", style="dim")
    table.add_column("Error", style="dim", overflow="fold")

    for task in rows:
        style = STATUS_STYLES[task.status]
        table.add_row(
            str(task.task_id),
            task.entity_key,
            task.operation.value,
            "-" if task.target_version is None else str(task.target_version),
            f"[{style}]{task.status.value}[/{style}]",
            str(task.retry_count),
            task.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
            task.error_message or ""
        )

    console.print(table)


@main.command()
@click.argument('task_id', type=int)
@click.pass_context
def requeue(ctx: click.Context, task_id: int):
    """Move an ABANDONED or FAILED task back to PENDING."""
    settings = _load_settings(ctx)

    try:
        requeued, task = asyncio.run(_requeue(settings.database.path, task_id))
    except TaskNotFoundError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    if requeued:
        console.print(f"[green]✅ Requeued task #{task_id} ({task.entity_key})[/green]")
    else:
        console.print(
            f"[yellow]⚠️  Task #{task_id} is {task.status.value}; only ABANDONED or FAILED "
            f"tasks without a live duplicate can be requeued[/yellow]"
        )


@main.command()
@click.option('--dry-run', '-n', is_flag=True, help='Show what would be cleaned without doing it')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def cleanup(ctx: click.Context, dry_run: bool, yes: bool):
    """Delete old COMPLETED tasks, processed change events and deprecated documents."""
    settings = _load_settings(ctx)
    now = datetime.now()
    task_cutoff = now - settings.retention.completed_task_retention
    event_cutoff = now - settings.retention.processed_event_retention

    if dry_run:
        console.print("[blue]🔍 Dry run mode - showing what would be cleaned[/blue]")
        console.print(f"[dim]COMPLETED tasks last updated before {task_cutoff:%Y-%m-%d %H:%M}[/dim]")
        console.print(f"[dim]Processed events older than {event_cutoff:%Y-%m-%d %H:%M}[/dim]")
        console.print(
            f"[dim]DEPRECATED documents older than "
            f"{settings.retention.deprecated_document_hours:g}h in {settings.qdrant.collection_name}[/dim]"
        )
        return

    if not yes and not click.confirm('Delete old completed tasks, processed events and deprecated documents?'):
        console.print("[yellow]Aborted.[/yellow]")
        raise click.Abort()

    try:
        tasks_deleted, events_deleted = asyncio.run(
            _cleanup(settings.database.path, task_cutoff, event_cutoff)
        )
    except Exception as e:
        console.print(f"[red]❌ Cleanup failed: {e}[/red]")
        sys.exit(1)

    console.print(f"[green]🧹 Removed {tasks_deleted} tasks and {events_deleted} events[/green]")

    if settings.qdrant.is_local:
        return
    if not _check_qdrant_connection(settings.qdrant.url):
        console.print("[yellow]⚠️  Qdrant not available, deprecated documents were not purged[/yellow]")
        return

    result = asyncio.run(_purge_deprecated(settings))
    if result.success:
        console.print(f"[green]🧹 Purged {result.affected_count} deprecated documents[/green]")
    else:
        console.print(f"[red]❌ Purge failed: {result.error}[/red]")
        sys.exit(1)


@main.command(name="config")
@click.pass_context
def show_config(ctx: click.Context):
    """Print the effective configuration."""
    settings = _load_settings(ctx)
    console.print_json(json.dumps(settings.to_dict()))


def _config_file(ctx: click.Context) -> Path:
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    if config_path:
        return Path(config_path)
    return GlobalSettings().default_config_file


def _load_settings(ctx: click.Context) -> SyncSettings:
    """Load settings for a command and configure logging from them"""
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        settings = ConfigurationLoader().load(config_path)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)

    configure_logging(settings.logging.level, settings.logging.file)
    return settings


async def _init_database(path: str) -> None:
    async with SyncDatabase(path):
        pass


async def _queue_summary(path: str) -> Tuple[Dict[TaskStatus, int], int]:
    async with SyncDatabase(path) as database:
        counts = await SyncTaskQueue(database).count_by_status()
        unprocessed = await ChangeEventLog(database).count_unprocessed()
        return counts, unprocessed


async def _list_tasks(path: str, task_status: Optional[TaskStatus], limit: int) -> List[SyncTask]:
    async with SyncDatabase(path) as database:
        return await SyncTaskQueue(database).list_tasks(status=task_status, limit=limit)


async def _requeue(path: str, task_id: int) -> Tuple[bool, SyncTask]:
    async with SyncDatabase(path) as database:
        queue = SyncTaskQueue(database)
        task = await queue.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task #{task_id} does not exist")

        requeued = await queue.requeue(task_id)
        return requeued, await queue.get(task_id)


async def _cleanup(path: str, task_cutoff: datetime, event_cutoff: datetime) -> Tuple[int, int]:
    async with SyncDatabase(path) as database:
        tasks_deleted = await SyncTaskQueue(database).delete_completed_older_than(task_cutoff)
        events_deleted = await ChangeEventLog(database).delete_processed_older_than(event_cutoff)
        return tasks_deleted, events_deleted


def _index_store(settings: SyncSettings) -> QdrantIndexStore:
    return QdrantIndexStore(settings.qdrant, HashingEmbedder(dimensions=settings.qdrant.vector_size))


async def _init_collection(settings: SyncSettings) -> StorageResult:
    index = _index_store(settings)
    try:
        return await index.ensure_collection()
    finally:
        await index.disconnect()


async def _index_summary(settings: SyncSettings) -> Tuple[int, int]:
    index = _index_store(settings)
    try:
        active = await index.count({"status": DocumentStatus.ACTIVE.value})
        deprecated = await index.count({"status": DocumentStatus.DEPRECATED.value})
        return active, deprecated
    finally:
        await index.disconnect()


async def _purge_deprecated(settings: SyncSettings) -> StorageResult:
    index = _index_store(settings)
    try:
        return await index.purge_deprecated(settings.retention.deprecated_document_retention)
    finally:
        await index.disconnect()


def _check_qdrant_connection(url: str) -> bool:
    """Check if Qdrant is accessible."""
    try:
        response = requests.get(f"{url.rstrip('/')}/healthz", timeout=2)
        return response.status_code == 200
    except requests.RequestException:
        return False


if __name__ == "__main__":
    main()
