"""
Interactive Brokers commands for the ibtools CLI.

- check: Connect (with retries) and run one heartbeat probe
- watch: Keep the connection alive until interrupted
- config: Show the effective connection settings
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ibtools.config import IbConfig
from ibtools.errors import ConfigurationError
from ibtools.ib import ConnectionTools
from ibtools.logging import get_logger

logger = get_logger(__name__)
console = Console()
error_console = Console(stderr=True)

ib_app = typer.Typer(
    name="ib",
    help="Interactive Brokers connection commands",
    no_args_is_help=True,
)


def _load_config(
    host: Optional[str], port: Optional[int], client_id: Optional[int]
) -> IbConfig:
    overrides = {"host": host, "port": port, "client_id": client_id}
    try:
        return IbConfig(**{k: v for k, v in overrides.items() if v is not None})
    except ConfigurationError as e:
        error_console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(code=2)


def _build_tools(config: IbConfig) -> ConnectionTools:
    return ConnectionTools(config=config)


def _stats_table(title: str, stats: dict) -> Table:
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in stats.items():
        table.add_row(key, str(value))
    return table


async def _check_async(tools: ConnectionTools, max_retries: int) -> bool:
    try:
        if not await tools.safe_connect(max_retries):
            return False
        return await tools.check_connection()
    finally:
        tools.disconnect()


@ib_app.command("check")
def check(
    host: Optional[str] = typer.Option(None, "--host", help="Gateway host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Gateway port"),
    client_id: Optional[int] = typer.Option(None, "--client-id", help="API client id"),
    max_retries: int = typer.Option(
        0, "--max-retries", "-r", help="Refused connects tolerated before giving up"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show statistics"),
):
    """
    Connect to TWS / IB Gateway and run one heartbeat probe.

    Examples:
        ibtools ib check
        ibtools ib check --port 7497 --max-retries 3 --verbose
    """
    config = _load_config(host, port, client_id)
    tools = _build_tools(config)

    alive = asyncio.run(_check_async(tools, max_retries))

    if verbose:
        stats = tools.get_stats()
        console.print(_stats_table("Supervisor", stats["supervisor"]))
        console.print(_stats_table("Heartbeat", stats["prober"]))

    if alive:
        console.print(
            f"[bold green]Connection OK[/bold green] {config.host}:{config.port}"
        )
        return

    error_console.print(
        f"[bold red]Connection failed[/bold red] {config.host}:{config.port}"
    )
    sys.exit(1)


@ib_app.command("watch")
def watch(
    host: Optional[str] = typer.Option(None, "--host", help="Gateway host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Gateway port"),
    client_id: Optional[int] = typer.Option(None, "--client-id", help="API client id"),
    interval: Optional[float] = typer.Option(
        None, "--interval", "-i", help="Seconds between heartbeat probes"
    ),
):
    """
    Connect and keep the connection alive until Ctrl-C.

    Examples:
        ibtools ib watch --interval 30
    """
    config = _load_config(host, port, client_id)
    tools = _build_tools(config)

    # Returns True when the loop ended because the connection was lost
    async def _watch() -> bool:
        try:
            if not await tools.safe_connect():
                return True
            await tools.run_keepalive(interval)
            return not tools.stop_event.is_set()
        finally:
            tools.disconnect()

    try:
        failed = asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("[yellow]Stopped[/yellow]")
        return

    if failed:
        error_console.print("[bold red]Connection lost and could not be restored[/bold red]")
        sys.exit(1)


@ib_app.command("config")
def show_config(
    host: Optional[str] = typer.Option(None, "--host", help="Gateway host"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Gateway port"),
    client_id: Optional[int] = typer.Option(None, "--client-id", help="API client id"),
):
    """Show the effective IB connection settings."""
    config = _load_config(host, port, client_id)
    console.print(_stats_table("IB configuration", config.to_dict()))
