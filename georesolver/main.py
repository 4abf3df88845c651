#!/usr/bin/env python3
"""
GeoResolver - reference data pipeline entry point.

Refreshes the country / region / city / timezone reference tables from their
open sources, reconciles the hierarchy, and answers point lookups.

Usage:
    python -m georesolver.main update
    python -m georesolver.main update --dry-run
    python -m georesolver.main status
    python -m georesolver.main lookup 55.75 37.61
"""

import sys

import click
from loguru import logger
from rich.console import Console
from rich.table import Table

from georesolver.config import DATA_SOURCES, settings
from georesolver.lock import LockNotAcquiredError
from georesolver.lookup import GeoLookupService
from georesolver.orchestrator import IngestionOrchestrator, RunReport
from georesolver.reconciliation import ReconciliationResult
from georesolver.store import MemoryStore, ReferenceStore


console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_LOCKED = 3


def open_store() -> ReferenceStore:
    """PostGIS store on the configured database."""
    from georesolver.store.postgis import PostGISStore
    return PostGISStore()


def _close(store: ReferenceStore) -> None:
    close = getattr(store, "close", None)
    if close is not None:
        close()


def print_report(report: RunReport) -> None:
    table = Table(title="Phases")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Features")
    table.add_column("Processed")
    table.add_column("Skipped")
    table.add_column("Alpha-3 merges")
    table.add_column("Duration")

    for name, stats in report.phases.items():
        color = {"loaded": "green", "skipped": "yellow"}.get(stats.status, "red")
        duration = f"{stats.duration_seconds:.1f}s" if stats.duration_seconds is not None else "-"
        table.add_row(
            name,
            f"[{color}]{stats.status}[/{color}]",
            str(stats.features_seen),
            str(stats.processed),
            str(stats.skipped),
            str(stats.fallback_updates),
            duration,
        )
    console.print(table)

    reasons = Table(title="Skipped features by reason")
    reasons.add_column("Phase")
    reasons.add_column("Reason")
    reasons.add_column("Count")
    for name, stats in report.phases.items():
        for reason, count in stats.skip_reasons.most_common():
            reasons.add_row(name, reason, str(count))
    if reasons.row_count:
        console.print(reasons)

    if report.reconciliation is not None:
        print_reconciliation(report.reconciliation)

    for error in report.errors:
        console.print(f"[red]{error}[/red]")


def print_reconciliation(result: ReconciliationResult) -> None:
    table = Table(title="Reconciliation")
    table.add_column("Step")
    table.add_column("Rows")
    table.add_row("Region hints changed", str(result.hints_changed))
    table.add_row("Assigned by centroid", str(result.assigned_by_centroid))
    table.add_row("Assigned by intersection", str(result.assigned_by_intersection))
    table.add_row("Removed: cross-country", str(result.cross_country_removed))
    table.add_row("Removed: no region", str(result.unassigned_removed))
    for flag, count in result.flags.items():
        table.add_row(f"[yellow]Flagged: {flag}[/yellow]", str(count))
    console.print(table)

    for step, error in result.stage_errors.items():
        console.print(f"[red]Step '{step}' failed: {error}[/red]")


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def cli(debug):
    """GeoResolver reference data pipeline"""
    if debug:
        from georesolver.utils.logging import setup_logging
        setup_logging(level="DEBUG")


@cli.command()
@click.option("--dry-run", is_flag=True, help="Load into an in-memory store; the database is not touched")
@click.option("--skip-fetch", is_flag=True, help="Use existing raw data instead of downloading")
@click.option("--no-truncate", is_flag=True, help="Merge into the existing tables instead of reloading them")
def update(dry_run: bool, skip_fetch: bool, no_truncate: bool):
    """Refresh all reference tables and reconcile the hierarchy."""
    console.print("\n[bold blue]GeoResolver - Data Update[/bold blue]")
    console.print(f"Dry run: {dry_run}")
    console.print(f"Skip fetch: {skip_fetch}\n")

    store = MemoryStore() if dry_run else open_store()
    truncate = False if no_truncate else None
    try:
        report = IngestionOrchestrator(store, skip_fetch=skip_fetch, truncate=truncate).run()
    except LockNotAcquiredError as e:
        console.print(f"[yellow]{e}. Another update is running; nothing was changed.[/yellow]")
        sys.exit(EXIT_LOCKED)
    finally:
        _close(store)

    print_report(report)
    if not report.success:
        console.print("[red]Update failed; the last-update timestamp was not advanced.[/red]")
        sys.exit(EXIT_FAILED)
    console.print(f"[green]Update complete in {report.duration_seconds:.1f}s[/green]")


@cli.command()
def reconcile():
    """Run only the spatial reconciliation pass."""
    store = open_store()
    try:
        result = IngestionOrchestrator(store).reconcile()
    except LockNotAcquiredError as e:
        console.print(f"[yellow]{e}[/yellow]")
        sys.exit(EXIT_LOCKED)
    finally:
        _close(store)

    print_reconciliation(result)
    if not result.complete:
        sys.exit(EXIT_FAILED)


@cli.command()
def status():
    """Show the last update, table sizes and the current lock holder."""
    console.print("\n[bold blue]GeoResolver - Status[/bold blue]\n")

    store = open_store()
    try:
        watermark = store.get_watermark()
        counts = store.entity_counts()
        holder = store.lock_holder(settings.lock.name)
    finally:
        _close(store)

    console.print(f"Last successful update: {watermark.isoformat() if watermark else '[yellow]never[/yellow]'}")
    if holder:
        console.print(f"[yellow]Update in progress: {holder['holder']} (expires {holder['expires_at']})[/yellow]")

    table = Table()
    table.add_column("Table")
    table.add_column("Rows")
    for name, count in counts.items():
        table.add_row(name, str(count))
    console.print(table)


@cli.command()
@click.argument("lat", type=float)
@click.argument("lon", type=float)
def lookup(lat: float, lon: float):
    """Show the country, region, city and timezone containing LAT LON."""
    store = open_store()
    try:
        result = GeoLookupService(store).lookup(lat, lon)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(EXIT_FAILED)
    finally:
        _close(store)

    if result is None:
        console.print("[yellow]No country contains this point[/yellow]")
        return

    table = Table()
    table.add_column("Field")
    table.add_column("Value")
    for key, value in result.to_dict().items():
        table.add_row(key, "-" if value is None else str(value))
    console.print(table)


@cli.command()
def list_sources():
    """List the datasets and their mirrors."""
    console.print("\n[bold blue]Reference Datasets[/bold blue]\n")

    table = Table()
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Mandatory")
    table.add_column("Mirrors")
    table.add_column("License")

    for source_id, source_info in DATA_SOURCES.items():
        mandatory = "[green]✓[/green]" if source_info.get("mandatory") else "[dim]✗[/dim]"
        table.add_row(
            source_id,
            source_info.get("name", source_id),
            mandatory,
            "\n".join(source_info.get("mirrors", [])),
            source_info.get("license", ""),
        )

    console.print(table)


@cli.command()
@click.option("--drop", is_flag=True, help="Drop existing tables first (USE WITH CAUTION!)")
def init_db(drop: bool):
    """Create the PostGIS extension and all tables."""
    from georesolver.database import create_all_tables, drop_all_tables

    if drop:
        click.confirm("Drop all tables?", abort=True)
        logger.warning("Dropping all tables...")
        drop_all_tables()
    create_all_tables()
    console.print("[green]Tables created[/green]")


if __name__ == "__main__":
    cli()
