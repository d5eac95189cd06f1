"""
Command-line interface for profile-monitor.

Provides commands to run the monitor, force a check, manage sources,
inspect a running monitor and maintain the database.

Usage:
    profile-monitor run                  # Run monitor + status API + metrics
    profile-monitor check <handle>       # Force-check one source now
    profile-monitor status               # Status of the running monitor
    profile-monitor reset-circuit --all  # Close circuits on the running monitor
    profile-monitor init-db              # Initialize database
    profile-monitor add-source <handle>  # Subscribe a channel to a profile
    profile-monitor prune-history        # Delete old notification history
"""

import asyncio
import json
import signal
import sys

import click
import httpx

from src.config.settings import get_settings
from src.observability.logging import setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Profile Monitor - new-post notifications for social profiles."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


def _api_base(url: str | None) -> str:
    return (url or f"http://localhost:{get_settings().api_port}").rstrip("/")


@main.command()
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
@click.option("--api/--no-api", default=True, help="Serve the health/status API")
@click.option("--api-port", default=None, type=int, help="API server port")
def run(metrics: bool, metrics_port: int | None, api: bool, api_port: int | None) -> None:
    """Run the monitor until SIGINT/SIGTERM."""
    import uvicorn

    from src.api.app import create_app
    from src.api.dependencies import set_database, set_monitor_service
    from src.ingestion.http_client import HTTPClient
    from src.monitor.factory import create_monitor_service
    from src.storage.database import Database

    settings = get_settings()
    if not settings.discord_configured:
        raise click.ClickException("DISCORD_BOT_TOKEN is not set")

    async def run_monitor():
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        async with Database() as db, HTTPClient() as http:
            service = create_monitor_service(db, http)
            set_database(db)
            set_monitor_service(service)

            if metrics:
                get_metrics().start_server(port=metrics_port)

            server = None
            server_task = None
            if api:
                server = uvicorn.Server(
                    uvicorn.Config(
                        create_app(),
                        host=settings.api_host,
                        port=api_port or settings.api_port,
                        log_level="warning",
                    )
                )
                # Signals are handled here, not by uvicorn
                server.install_signal_handlers = lambda: None
                server_task = asyncio.create_task(server.serve())

            await service.start()
            click.echo("Monitor running. Press Ctrl+C to stop.")
            await stop_event.wait()

            click.echo("Shutting down, waiting for in-flight checks...")
            await service.shutdown()
            if server is not None:
                server.should_exit = True
                await server_task

    asyncio.run(run_monitor())


@main.command()
@click.argument("handle")
def check(handle: str) -> None:
    """Force an immediate check of HANDLE (notifies if a new post is found)."""
    from src.ingestion.http_client import HTTPClient
    from src.monitor.factory import create_monitor_service
    from src.resilience.errors import SourceNotFound
    from src.storage.database import Database
    from src.storage.repository import SourceRepository

    async def run_check():
        async with Database() as db, HTTPClient() as http:
            try:
                service = create_monitor_service(db, http)
            except ValueError as e:
                raise click.ClickException(str(e)) from e

            try:
                outcome = await service.force_check(handle)
            except SourceNotFound as e:
                raise click.ClickException(str(e)) from e

            source = await SourceRepository(db).get_source(handle)
            click.echo(f"Checked @{handle}: {outcome.value}")
            if source is not None:
                click.echo(f"  Last item: {source.last_item_id or '-'}")

    asyncio.run(run_check())


@main.command()
@click.option("--url", default=None, help="Base URL of the running monitor API")
def status(url: str | None) -> None:
    """Show the status of a running monitor."""
    base = _api_base(url)
    try:
        resp = httpx.get(f"{base}/status", timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        click.echo(click.style(f"Could not reach monitor at {base}: {e}", fg="red"))
        sys.exit(1)

    data = resp.json()
    running = data.get("running")
    click.echo("\nMonitor Status:")
    click.echo("-" * 40)
    click.echo(click.style(f"  Running: {running}", fg="green" if running else "red"))
    click.echo(f"  Check interval: {data.get('check_interval_minutes')} min")
    click.echo(f"  Sources monitored: {data.get('sources_monitored')}")

    hours = data.get("active_hours") or {}
    if hours.get("configured"):
        click.echo(
            f"  Active hours: {hours['start']:02d}:00-{hours['end']:02d}:00 "
            f"{hours['timezone']} (active now: {hours['currently_active']})"
        )

    circuits = data.get("circuit_breaker_states") or []
    if circuits:
        click.echo("\n  Circuits:")
        for c in circuits:
            color = "green" if c["state"] == "closed" else "yellow"
            click.echo(click.style(
                f"    {c['key']}: {c['state']} ({c['failures']} failures, "
                f"{c['remaining_reset_seconds']}s to trial)",
                fg=color,
            ))

    click.echo("\n  Metrics:")
    click.echo(json.dumps(data.get("metrics", {}), indent=2, default=str))


@main.command("reset-circuit")
@click.argument("handle", required=False)
@click.option("--all", "reset_all", is_flag=True, help="Reset every circuit")
@click.option("--url", default=None, help="Base URL of the running monitor API")
def reset_circuit(handle: str | None, reset_all: bool, url: str | None) -> None:
    """Close the circuit for HANDLE (or all circuits) on a running monitor."""
    if not handle and not reset_all:
        raise click.UsageError("Give a HANDLE or --all")

    base = _api_base(url)
    path = "/circuits/reset" if reset_all else f"/circuits/{handle}/reset"
    try:
        resp = httpx.post(f"{base}{path}", timeout=10.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        click.echo(click.style(f"Could not reach monitor at {base}: {e}", fg="red"))
        sys.exit(1)

    target = "all circuits" if reset_all else f"circuit for @{handle}"
    click.echo(click.style(f"Reset {target}", fg="green"))


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.storage.database import Database
    from src.storage.repository import create_tables

    async def run_init():
        async with Database() as db:
            await create_tables(db)
        click.echo("Database initialized successfully")

    asyncio.run(run_init())


@main.command("add-source")
@click.argument("handle")
@click.option("--display-name", default=None, help="Name shown in notifications")
@click.option("--channel", "channels", multiple=True, help="Destination channel id (can repeat)")
@click.option("--guild", default=None, help="Guild id of the channels")
@click.option("--message", default=None, help="Custom message template")
@click.option("--role", default=None, help="Role id to mention")
def add_source(
    handle: str,
    display_name: str | None,
    channels: tuple[str, ...],
    guild: str | None,
    message: str | None,
    role: str | None,
) -> None:
    """Start monitoring HANDLE, optionally subscribing channels to it.

    Example:
        profile-monitor add-source someprofile --channel 1234567890
        profile-monitor add-source someprofile --channel 123 --message "New from {username}: {url}"
    """
    from src.storage.database import Database
    from src.storage.repository import DestinationRepository, SourceRepository

    handle = handle.lstrip("@").strip()
    if not handle:
        raise click.UsageError("HANDLE must not be empty")

    async def run_add():
        async with Database() as db:
            source = await SourceRepository(db).add_source(handle, display_name)
            destinations = DestinationRepository(db)
            for channel_id in channels:
                await destinations.add_destination(
                    source.id,
                    channel_id,
                    guild_id=guild,
                    custom_message=message,
                    mention_role_id=role,
                )

        click.echo(f"Monitoring @{handle}")
        for channel_id in channels:
            click.echo(f"  -> channel {channel_id}")

    asyncio.run(run_add())


@main.command("prune-history")
@click.option("--days", default=None, type=int, help="Days of history to keep")
def prune_history(days: int | None) -> None:
    """Delete notification history older than the retention window."""
    from src.monitor.config import MonitorConfig
    from src.storage.database import Database
    from src.storage.repository import HistoryRepository

    days = days or MonitorConfig().history_retention_days

    async def run_prune():
        async with Database() as db:
            deleted = await HistoryRepository(db).prune_older_than(days)
        click.echo(f"Deleted {deleted} history records older than {days} days")

    asyncio.run(run_prune())


if __name__ == "__main__":
    main()
