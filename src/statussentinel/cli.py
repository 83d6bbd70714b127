"""Command-line interface for StatusSentinel."""

import asyncio
import json
import logging
import signal
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table
from rich.text import Text

from statussentinel import __version__
from statussentinel.config import Config, ConfigError, ServiceConfig, create_example_config
from statussentinel.models import Incident, ProbeResult, utcnow
from statussentinel.monitor import StatusMonitor
from statussentinel.store import MemoryResultStore, SQLResultStore, StoreError

console = Console()

DEFAULT_CONFIG_PATHS = ["statussentinel.yaml", "statussentinel.yml", "services.json", "config.yaml"]
DATABASE_URL_ENV = "STATUSSENTINEL_DATABASE_URL"


def setup_logging(level: str) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def find_config(config: Optional[str]) -> Optional[Path]:
    """Get the config path given on the command line or the first default that exists."""
    if config:
        return Path(config)
    for default_path in DEFAULT_CONFIG_PATHS:
        path = Path(default_path).expanduser()
        if path.exists():
            return path
    return None


def load_config(config: Optional[str]) -> Config:
    """Load configuration or exit with status 1."""
    path = find_config(config)
    if path is None:
        console.print("[red]No configuration file found.[/]")
        console.print("Create one with: [cyan]statussentinel init[/]")
        sys.exit(1)

    try:
        return Config.from_file(path)
    except ConfigError as e:
        console.print(f"[red]Invalid configuration in {path}:[/]")
        for error in e.errors:
            console.print(f"  • {error}")
        sys.exit(1)


def open_store(database_url: str) -> SQLResultStore:
    """Connect to the result store or exit with status 1."""
    try:
        store = SQLResultStore(database_url)
        store.initialize()
    except StoreError as e:
        console.print(f"[red]Result store unavailable:[/] {e}")
        sys.exit(1)
    return store


def resolve_database_url(config: Optional[str], database_url: Optional[str]) -> str:
    if database_url:
        return database_url
    if find_config(config) is not None:
        return load_config(config).database_url
    return Config().database_url


def result_status(result: ProbeResult) -> Text:
    if result.up:
        return Text("UP", style="green")
    return Text("DOWN", style="red")


def create_results_table(services: list[ServiceConfig], results: list[ProbeResult]) -> Table:
    """Create a Rich table of one round of probe results."""
    table = Table(title="Service Status", show_header=True, header_style="bold")

    table.add_column("Service", style="cyan", no_wrap=True)
    table.add_column("Target")
    table.add_column("Status", justify="center")
    table.add_column("Latency", justify="right")
    table.add_column("Detail")

    for service, result in zip(services, results):
        latency = f"{result.latency_ms:.0f} ms" if result.latency_ms is not None else "-"
        detail = str(result.reason) if result.reason else result.detail
        table.add_row(service.name, str(service.target), result_status(result), latency, detail)

    return table


def create_incidents_table(incidents: list[Incident]) -> Table:
    """Create a Rich table of incidents."""
    table = Table(title="Incidents", show_header=True, header_style="bold")

    table.add_column("#", justify="right")
    table.add_column("Service", style="cyan", no_wrap=True)
    table.add_column("Started")
    table.add_column("Ended")
    table.add_column("Duration", justify="right")
    table.add_column("Reason")

    for incident in incidents:
        if incident.is_open:
            ended = Text("ongoing", style="red")
            duration = "-"
        else:
            ended = Text(incident.ended_at.strftime("%Y-%m-%d %H:%M:%S"))
            duration = str(timedelta(seconds=int(incident.duration_seconds)))
        table.add_row(
            str(incident.id),
            incident.service_name,
            incident.started_at.strftime("%Y-%m-%d %H:%M:%S"),
            ended,
            duration,
            incident.reason,
        )

    return table


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """StatusSentinel - Uptime monitoring for HTTP services and Minecraft servers."""
    pass


async def _serve(monitor: StatusMonitor) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, monitor.stop)
        except (NotImplementedError, RuntimeError):
            pass  # no signal handlers on this platform; Ctrl+C still cancels
    await monitor.run()


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--database-url",
    envvar=DATABASE_URL_ENV,
    help=f"SQLAlchemy database URL (env: {DATABASE_URL_ENV})",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (default: from config)",
)
def run(config: Optional[str], database_url: Optional[str], log_level: Optional[str]) -> None:
    """Monitor all configured services until interrupted."""
    cfg = load_config(config)
    setup_logging(log_level or cfg.log_level)

    store = open_store(database_url or cfg.database_url)
    monitor = StatusMonitor(cfg, store)
    try:
        monitor.recover()
    except StoreError as e:
        console.print(f"[red]Cannot read incident state:[/] {e}")
        store.close()
        sys.exit(1)

    console.print(f"[green]Monitoring {len(cfg.services)} services[/] [dim](Ctrl+C to stop)[/]")
    for state in monitor.get_states():
        if state.degraded:
            console.print(f"  [yellow]{state.service_name}[/] resumes with an open incident")

    try:
        asyncio.run(_serve(monitor))
    except KeyboardInterrupt:
        pass
    finally:
        store.close()

    console.print("[dim]Stopped.[/]")


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option(
    "--json", "output_json",
    is_flag=True,
    help="Output in JSON format",
)
def check(config: Optional[str], output_json: bool) -> None:
    """Probe every configured service once."""
    setup_logging("WARNING")
    cfg = load_config(config)

    monitor = StatusMonitor(cfg, MemoryResultStore())
    results = asyncio.run(monitor.check_all())

    if output_json:
        click.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        console.print(create_results_table(cfg.services, results))

    if not all(r.up for r in results):
        sys.exit(1)


@main.command()
@click.argument("target")
@click.option("-t", "--timeout", default=10.0, type=float, help="Timeout in seconds (default: 10)")
@click.option("--insecure", is_flag=True, help="Do not verify TLS certificates")
@click.option("--json", "output_json", is_flag=True, help="Output JSON")
def probe(target: str, timeout: float, insecure: bool, output_json: bool) -> None:
    """Probe a single TARGET (http(s)://... or mc://host:port)."""
    setup_logging("WARNING")

    try:
        service = ServiceConfig.create(target, target, timeout=timeout, verify_tls=not insecure)
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        sys.exit(1)

    cfg = Config(services=[service])
    result = asyncio.run(StatusMonitor(cfg, MemoryResultStore()).check_all())[0]

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print(create_results_table(cfg.services, [result]))

    if not result.up:
        sys.exit(1)


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option("--database-url", envvar=DATABASE_URL_ENV, help="SQLAlchemy database URL")
@click.option("--open", "only_open", is_flag=True, help="Only show ongoing incidents")
@click.option("-s", "--service", help="Only show incidents of this service")
@click.option("--json", "output_json", is_flag=True, help="Output JSON")
def incidents(
    config: Optional[str],
    database_url: Optional[str],
    only_open: bool,
    service: Optional[str],
    output_json: bool,
) -> None:
    """List recorded incidents."""
    setup_logging("WARNING")
    store = open_store(resolve_database_url(config, database_url))

    try:
        found = store.list_incidents(include_closed=not only_open, service_name=service)
    except StoreError as e:
        console.print(f"[red]Cannot list incidents:[/] {e}")
        sys.exit(1)
    finally:
        store.close()

    if output_json:
        click.echo(json.dumps([i.to_dict() for i in found], indent=2))
    elif not found:
        console.print("[green]No incidents recorded.[/]")
    else:
        console.print(create_incidents_table(found))


@main.command()
@click.option(
    "-c", "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.option("--database-url", envvar=DATABASE_URL_ENV, help="SQLAlchemy database URL")
@click.option(
    "--days",
    type=click.IntRange(min=0),
    help="Keep this many days of results; 0 keeps everything (default: from config)",
)
def prune(config: Optional[str], database_url: Optional[str], days: Optional[int]) -> None:
    """Delete old probe results."""
    setup_logging("WARNING")
    if days is None:
        if find_config(config) is not None:
            days = load_config(config).history_retention_days
        else:
            days = Config().history_retention_days

    if days == 0:
        console.print("[yellow]History retention is disabled (0 days); nothing removed.[/]")
        return

    store = open_store(resolve_database_url(config, database_url))
    try:
        removed = store.prune_results(utcnow() - timedelta(days=days))
    except StoreError as e:
        console.print(f"[red]Pruning failed:[/] {e}")
        sys.exit(1)
    finally:
        store.close()

    console.print(f"[green]Removed {removed} probe results older than {days} days.[/]")


@main.command()
@click.option(
    "-o", "--output",
    default="statussentinel.yaml",
    help="Output file path",
)
@click.option(
    "--force", "-f",
    is_flag=True,
    help="Overwrite existing file",
)
def init(output: str, force: bool) -> None:
    """Create an example configuration file."""
    path = Path(output)

    if path.exists() and not force:
        console.print(f"[red]File already exists: {path}[/]")
        console.print("Use --force to overwrite")
        sys.exit(1)

    example = create_example_config()
    example.to_yaml(path)

    console.print(f"[green]Created example configuration: {path}[/]")
    console.print("Edit this file to add your services.")


if __name__ == "__main__":
    main()
