"""Click-based CLI for tariff-sync.

Thin wrapper around library modules. Zero business logic: every operation
delegates to ingestion, publishing, or sync modules.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import NoReturn

import click
from rich.console import Console
from rich.table import Table

console = Console(stderr=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call. Configures logging once."""
    if "config" not in ctx.obj:
        from tariff_sync.core import TariffSyncError, load_config
        from tariff_sync.core.logging import configure_logging

        try:
            config = load_config(config_path=ctx.obj.get("config_path"))
        except TariffSyncError as e:
            _fail(e)
        configure_logging(config.logging, verbose=ctx.obj.get("verbose", False), console=console)
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]✗ {error}[/red]")
    raise SystemExit(1)


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from tariff_sync.ingestion import create_store

    return await create_store(config.storage)


@asynccontextmanager
async def _open_pipeline(config):
    """Build provider, store and sink; close them all on exit."""
    from tariff_sync.ingestion import WildberriesClient
    from tariff_sync.publishing import create_sink
    from tariff_sync.sync import TariffSync

    store = await _create_store_async(config)
    try:
        sink = create_sink(config.publish)
        try:
            async with WildberriesClient(config.provider, box_size=config.storage.box_size) as provider:
                yield TariffSync(provider, store, sink, timeouts=config.timeouts)
        finally:
            await sink.close()
    finally:
        await store.close()


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="TARIFF_SYNC_CONFIG",
    default=None,
    help="Path to tariff-sync.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output.",
)
@click.version_option(package_name="tariff-sync")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Tariff Sync: Wildberries box-tariff history and snapshot publishing."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def run(ctx: click.Context) -> None:
    """Fetch, persist and publish today's tariffs once."""
    from tariff_sync.core import TariffSyncError

    config = _load_config(ctx)

    async def _run():
        async with _open_pipeline(config) as sync:
            try:
                return await sync.run()
            except TariffSyncError:
                return sync.last_report

    try:
        report = _run_async(_run())
    except TariffSyncError as e:
        _fail(e)

    _output_report(report)
    if not report.succeeded:
        raise SystemExit(1)


def _output_report(report) -> None:
    """Render a run report as a Rich table."""
    table = Table(title=f"Sync run {report.run_id}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("State", str(report.state))
    table.add_row("Fetched", str(report.fetched))
    table.add_row("Persisted", str(report.persisted))
    table.add_row("Published to", ", ".join(report.destinations) or "-")
    if report.duration_seconds is not None:
        table.add_row("Duration", f"{report.duration_seconds:.2f}s")
    if report.failed_stage is not None:
        table.add_section()
        table.add_row("Failed stage", str(report.failed_stage))
        table.add_row("Error", report.error or "")

    console.print(table)
    if report.succeeded:
        console.print("[green]✓[/green] Tariffs synchronized")
    else:
        console.print(f"[red]✗[/red] Sync failed while {report.failed_stage}")


# ---------------------------------------------------------------------------
# schedule
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--now",
    "run_now",
    is_flag=True,
    default=False,
    help="Run once immediately, then follow the schedule.",
)
@click.pass_context
def schedule(ctx: click.Context, run_now: bool) -> None:
    """Run the sync on the configured cron schedule until interrupted."""
    from tariff_sync.core import TariffSyncError
    from tariff_sync.sync import SyncScheduler

    config = _load_config(ctx)

    async def _run():
        async with _open_pipeline(config) as sync:
            scheduler = SyncScheduler(sync, config.schedule)
            console.print(
                f"Scheduling tariff sync on [bold]{config.schedule.cron}[/bold] "
                f"({config.schedule.timezone}). Press Ctrl+C to stop."
            )
            await scheduler.run_forever(run_immediately=run_now)

    try:
        _run_async(_run())
    except KeyboardInterrupt:
        console.print("Stopped.")
    except TariffSyncError as e:
        _fail(e)


# ---------------------------------------------------------------------------
# init-db
# ---------------------------------------------------------------------------


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create or migrate the tariff database."""
    from tariff_sync.core import TariffSyncError

    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        await store.close()

    try:
        _run_async(_run())
    except TariffSyncError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Database ready at {config.storage.sqlite_path}")


# ---------------------------------------------------------------------------
# history
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--date",
    "-d",
    "on_date",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Tariff date (YYYY-MM-DD). Default: latest stored date.",
)
@click.option("--warehouse", "-w", type=str, default=None, help="Single warehouse name.")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "csv"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@click.pass_context
def history(
    ctx: click.Context,
    on_date: datetime | None,
    warehouse: str | None,
    output_format: str,
) -> None:
    """Show stored tariffs for one day."""
    from tariff_sync.core import TariffSyncError

    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            day = on_date.date() if on_date else await store.latest_date()
            if day is None:
                return None, []
            return day, await store.list_tariffs(on_date=day, warehouse=warehouse)
        finally:
            await store.close()

    try:
        day, records = _run_async(_run())
    except TariffSyncError as e:
        _fail(e)

    if not records:
        console.print("[yellow]No tariffs found. Run 'run' first.[/yellow]")
        raise SystemExit(1)

    if output_format == "json":
        _output_history_json(records)
    elif output_format == "csv":
        _output_history_csv(records)
    else:
        _output_history_table(records, day)


def _output_history_table(records, day) -> None:
    """Render stored tariffs as a Rich table."""
    from tariff_sync.publishing import sort_for_snapshot

    table = Table(title=f"Tariffs for {day}")
    table.add_column("Warehouse", style="bold")
    table.add_column("Region")
    table.add_column("Marketplace")
    table.add_column("Coefficient", justify="right")
    table.add_column("Updated")

    for r in sort_for_snapshot(records):
        table.add_row(
            r.warehouse_name,
            r.geo_name or "",
            "Yes" if r.is_marketplace else "No",
            f"{r.coefficient:.2f}",
            r.updated_at.isoformat(timespec="seconds") if r.updated_at else "",
        )

    console.print(table)


def _output_history_json(records) -> None:
    """Write stored tariffs as JSON to stdout."""
    output = [r.model_dump(mode="json") for r in records]
    click.echo(json.dumps(output, indent=2, default=str, ensure_ascii=False))


def _output_history_csv(records) -> None:
    """Write the published snapshot layout as CSV to stdout."""
    import csv
    import io

    from tariff_sync.publishing import render_snapshot

    buf = io.StringIO()
    csv.writer(buf).writerows(render_snapshot(records))
    click.echo(buf.getvalue(), nl=False)


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show database coverage and configured destinations."""
    from tariff_sync.core import TariffSyncError

    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await _gather_stats(store)
        finally:
            await store.close()

    try:
        stats = _run_async(_run())
    except TariffSyncError as e:
        _fail(e)

    table = Table(title="Tariff Sync Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Storage backend", config.storage.backend.value)
    table.add_row("Database path", config.storage.sqlite_path)
    table.add_section()
    table.add_row("Stored tariffs", str(stats["total_tariffs"]))
    table.add_row("Latest date", stats["latest_date"])
    table.add_row("Tariffs on latest date", str(stats["latest_count"]))
    table.add_section()
    table.add_row("Publish backend", config.publish.backend.value)
    table.add_row("Destinations", ", ".join(config.publish.destinations))
    table.add_row("Schedule", f"{config.schedule.cron} ({config.schedule.timezone})")

    console.print(table)


async def _gather_stats(store) -> dict:
    """Gather basic statistics from storage."""
    latest = await store.latest_date()
    return {
        "total_tariffs": await store.count(),
        "latest_date": str(latest) if latest else "N/A",
        "latest_count": await store.count(on_date=latest) if latest else 0,
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
