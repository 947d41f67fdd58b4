"""
Auction Collector CLI — scheduled Copart/IAAI sale history collection.

Usage:
    auction-collector serve --port 8000 --autostart
    auction-collector run --make BMW --make Toyota --format sqlite
    auction-collector status --store json --store-path ./data/checkpoints.json
    auction-collector restart "bmw:all:2012-latest" --reason "provider reindexed"
"""

import asyncio
import logging
import time

import click

store_options = [
    click.option(
        "--store",
        type=click.Choice(["json", "sqlite", "memory"]),
        default=None,
        help="Checkpoint store backend (default: COLLECTOR_STORE or json).",
    ),
    click.option(
        "--store-path",
        type=click.Path(),
        default=None,
        help="Checkpoint file/database path (default: COLLECTOR_STORE_PATH).",
    ),
]


def with_store_options(func):
    for option in reversed(store_options):
        func = option(func)
    return func


def _configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _settings(store, store_path, **overrides):
    from pathlib import Path

    from auction_collector.core.config import CollectorSettings

    return CollectorSettings.from_env(
        store=store,
        store_path=Path(store_path) if store_path else None,
        **overrides,
    )


def _catalog(catalog_path, makes):
    from pathlib import Path

    from auction_collector.models.catalog import default_catalog, load_catalog
    from auction_collector.models.job import PRIORITY_LUXURY, CollectionJob

    if makes:
        return [CollectionJob(make=make, priority=PRIORITY_LUXURY) for make in makes]
    if catalog_path:
        return load_catalog(Path(catalog_path))
    return default_catalog()


@click.group()
@click.version_option(package_name="auction-collector")
def cli():
    """Auction Collector — scheduled Copart/IAAI sale history collection."""
    pass


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address.")
@click.option("--port", "-p", type=int, default=8000, help="Bind port.")
@click.option("--catalog", "catalog_path", type=click.Path(exists=True), default=None,
              help="JSON catalog file (default: built-in priority catalog).")
@click.option("--autostart", is_flag=True, help="Start collecting as soon as the server is up.")
@click.option("--auto-start-on-urgent/--no-auto-start-on-urgent", default=None,
              help="Start the scheduler automatically when an urgent job is queued.")
@with_store_options
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def serve(host, port, catalog_path, autostart, auto_start_on_urgent, store, store_path, verbose):
    """Serve the control API with the scheduler in the background."""
    import uvicorn

    from auction_collector.api.app import create_app
    from auction_collector.core.runtime import CollectorRuntime

    _configure_logging(verbose)
    settings = _settings(store, store_path, auto_start_on_urgent=auto_start_on_urgent)
    runtime = CollectorRuntime.build(settings)
    app = create_app(runtime, catalog=_catalog(catalog_path, ()), autostart=autostart)
    uvicorn.run(app, host=host, port=port, log_level="debug" if verbose else "info")


@cli.command()
@click.option("--make", "-m", "makes", multiple=True, help="Collect only these makes.")
@click.option("--catalog", "catalog_path", type=click.Path(exists=True), default=None,
              help="JSON catalog file (default: built-in priority catalog).")
@click.option(
    "--format",
    "-f",
    "fmt",
    type=click.Choice(["jsonl", "sqlite"]),
    default="jsonl",
    help="Export format for sale records.",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(),
    default="./collection_output",
    help="Output directory for collected sale records.",
)
@click.option("--pages-per-run", type=int, default=None, help="Page budget per worker run.")
@click.option("--until-idle", is_flag=True, help="Exit once the queue is drained.")
@with_store_options
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def run(makes, catalog_path, fmt, output_dir, pages_per_run, until_idle, store, store_path, verbose):
    """Run the scheduler headless until Ctrl-C (or until the queue drains)."""
    from auction_collector.core.runtime import CollectorRuntime
    from auction_collector.exporters import get_exporter

    _configure_logging(verbose)
    settings = _settings(store, store_path, pages_per_run=pages_per_run)
    runtime = CollectorRuntime.build(settings, exporters=[get_exporter(fmt, output_dir)])

    try:
        asyncio.run(_run_headless(runtime, _catalog(catalog_path, makes), until_idle))
    except KeyboardInterrupt:
        click.echo("Interrupted; progress is checkpointed.")


async def _run_headless(runtime, catalog, until_idle: bool) -> None:
    from rich.console import Console
    from rich.live import Live

    from auction_collector.cli.render import render_status

    console = Console()
    await runtime.bootstrap(catalog)
    await runtime.scheduler.start()

    try:
        with Live(console=console, refresh_per_second=1) as live:
            while runtime.scheduler.state.running:
                status = await runtime.reporter.status()
                live.update(render_status(status))
                if until_idle and not status["queue_length"] and not status["current_job"]:
                    break
                await asyncio.sleep(1.0)
        await runtime.scheduler.stop(wait=True)
        # Snapshot while the store is still open
        status = await runtime.reporter.status()
    finally:
        await runtime.aclose()

    console.print(render_status(status))
    console.print("\n[bold green][DONE] Collection stopped[/bold green]")


@cli.command()
@with_store_options
def status(store, store_path):
    """Show per-make progress from the checkpoint store."""
    from rich.console import Console

    from auction_collector.cli.render import render_jobs
    from auction_collector.core.runtime import CollectorRuntime

    logging.basicConfig(level=logging.WARNING)
    runtime = CollectorRuntime.build(_settings(store, store_path), providers={})

    async def collect():
        try:
            return await runtime.reporter.jobs()
        finally:
            await runtime.store.close()

    jobs = asyncio.run(collect())
    Console().print(render_jobs(jobs))


@cli.command()
@click.argument("scope_key")
@click.option("--reason", "-r", required=True, help="Why the checkpoint is being reset.")
@click.option("--actor", default="cli", help="Who is resetting it (recorded in the audit log).")
@with_store_options
def restart(scope_key, reason, actor, store, store_path):
    """Reset a job's checkpoint to page 0 (audited)."""
    from auction_collector.core.errors import UnknownJob
    from auction_collector.core.runtime import CollectorRuntime

    logging.basicConfig(level=logging.INFO)
    runtime = CollectorRuntime.build(_settings(store, store_path), providers={})

    async def reset():
        try:
            return await runtime.scheduler.restart_make(scope_key, reason, actor=actor)
        finally:
            await runtime.store.close()

    try:
        asyncio.run(reset())
    except UnknownJob as e:
        raise click.ClickException(str(e))
    click.echo(f"Checkpoint {scope_key} reset at {time.strftime('%Y-%m-%d %H:%M:%S')}")


if __name__ == "__main__":
    cli()
