"""cybershuttle-tunnels CLI - Command line interface."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from cybershuttle_tunnels.core.config import ServerSettings, get_settings, load_client_config
from cybershuttle_tunnels.core.exceptions import (
    ConfigError,
    LeaseRequestError,
    TunnelsError,
    format_error_for_user,
)

console = Console()
logger = structlog.get_logger()

BANNER = """
 ┌─┐┬ ┬┌┐ ┌─┐┬─┐┌─┐┬ ┬┬ ┬┌┬┐┌┬┐┬  ┌─┐
 │  └┬┘├┴┐├┤ ├┬┘└─┐├─┤│ │ │  │ │  ├┤
 └─┘ ┴ └─┘└─┘┴└─└─┘┴ ┴└─┘ ┴  ┴ ┴─┘└─┘
        frp tunnels with leased ports
"""


def _configure_logging(log_level: str) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
    )


def _report_failure(stage: str, error: Exception) -> None:
    logger.error(f"{stage} failed", error=str(error))
    title = f"Error: {error.code}" if isinstance(error, TunnelsError) else f"{stage} failed"
    console.print(
        Panel(
            f"[red]{escape(format_error_for_user(error))}[/red]",
            title=title,
            border_style="red",
        )
    )


@click.group()
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default="info",
    help="Log level (default: info)",
)
def main(log_level: str):
    """cybershuttle-tunnels - frp tunnels on leased server ports.

    Examples:

        cybershuttle-tunnels server frps.toml --api-port 8000

        cybershuttle-tunnels client agent.json
    """
    _configure_logging(log_level)


@main.command()
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def client(config_file: str):
    """Lease a server port and run an frpc tunnel on it.

    CONFIG_FILE is a JSON, YAML or TOML client configuration.
    """
    from cybershuttle_tunnels.client.orchestrator import TunnelOrchestrator

    try:
        config = load_client_config(config_file)
    except ConfigError as e:
        _report_failure("Loading client config", e)
        sys.exit(1)

    try:
        settings = get_settings()
    except ValidationError as e:
        _report_failure("Loading client settings", ConfigError(str(e)))
        sys.exit(1)

    orchestrator = TunnelOrchestrator(
        config,
        frpc_binary=settings.frpc_binary,
        lease_timeout=settings.lease_request_timeout,
    )

    console.print(f"Starting tunnel for {config.local_ip}:{config.local_port}...", style="yellow")

    async def _run() -> None:
        port = await orchestrator.start()
        console.print(
            Panel(
                f"[green]Tunnel starting![/green]\n\n"
                f"[bold]Remote:[/bold] [cyan]{config.server_addr}:{port}[/cyan]\n"
                f"[bold]Forwarding:[/bold] {config.local_ip}:{config.local_port}",
                title=config.agent_id,
                border_style="green",
            )
        )
        try:
            await orchestrator.wait()
        finally:
            await orchestrator.stop()

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("[green]Tunnel closed.[/green]")
    except LeaseRequestError as e:
        _report_failure("Lease acquisition", e)
        sys.exit(1)
    except TunnelsError as e:
        _report_failure(f"frpc service for config file [{config_file}]", e)
        sys.exit(1)


@main.command()
@click.argument("config_file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--api-host", default=None, help="Lease API bind address")
@click.option("--api-port", type=int, default=None, help="Lease API port")
@click.option("--port-min", type=int, default=None, help="Allocatable port range start")
@click.option("--port-max", type=int, default=None, help="Allocatable port range end")
@click.option(
    "--lease-ttl-ms",
    type=int,
    default=None,
    help="Lease lifetime in milliseconds (0 disables expiry)",
)
@click.option(
    "--sweep-interval",
    type=float,
    default=None,
    help="Seconds between expired-lease purges (0 disables)",
)
def server(
    config_file: str | None,
    api_host: str | None,
    api_port: int | None,
    port_min: int | None,
    port_max: int | None,
    lease_ttl_ms: int | None,
    sweep_interval: float | None,
):
    """Run the lease API and an frps tunnel server.

    CONFIG_FILE is passed to frps unchanged; without it frps uses its defaults.
    """
    from cybershuttle_tunnels.server.main import run_server

    overrides = {
        "api_host": api_host,
        "api_port": api_port,
        "port_min": port_min,
        "port_max": port_max,
        "lease_ttl_ms": lease_ttl_ms,
        "sweep_interval": sweep_interval,
    }
    try:
        settings = ServerSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        _report_failure("Loading server settings", ConfigError(str(e)))
        sys.exit(1)

    console.print(BANNER, style="cyan")
    for label, value in settings.to_display_dict().items():
        console.print(f"{label}: {escape(value)}", style="dim")

    try:
        asyncio.run(run_server(settings, config_file))
    except KeyboardInterrupt:
        console.print("\nShutting down...", style="yellow")
    except OSError as e:
        _report_failure("Lease API startup", e)
        sys.exit(1)
    except TunnelsError as e:
        _report_failure(f"frps service for config file [{config_file or 'defaults'}]", e)
        sys.exit(1)


@main.command()
@click.option("--api", "server_api", required=True, help="Lease service URL")
@click.option("--agent-id", default="cli", help="Agent id sent with the request")
def reserve(server_api: str, agent_id: str):
    """Reserve a single port and print it."""
    from cybershuttle_tunnels.client.orchestrator import request_port

    try:
        response = asyncio.run(request_port(server_api, agent_id))
    except LeaseRequestError as e:
        _report_failure("Lease acquisition", e)
        sys.exit(1)

    console.print(str(response.port))


@main.command()
@click.option("--api", "server_api", required=True, help="Lease service URL")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def leases(server_api: str, json_output: bool):
    """Show the lease table of a running lease service."""
    import httpx

    try:
        with httpx.Client(timeout=5.0) as http_client:
            resp = http_client.get(f"{server_api.rstrip('/')}/leases")
            resp.raise_for_status()
            data = resp.json()
    except Exception as e:
        console.print(f"[red]Error connecting to lease service:[/red] {e}")
        sys.exit(1)

    if json_output:
        console.print(json.dumps(data, indent=2))
        return

    console.print(f"\n[bold]Port range:[/bold] {data.get('port_min')}-{data.get('port_max')}")
    console.print(f"[bold]Lease TTL:[/bold] {data.get('lease_ttl_ms')}ms")
    console.print(
        f"[bold]Leases:[/bold] {data.get('live_leases', 0)} live / {data.get('total_leases', 0)} total"
    )

    rows = data.get("leases", [])
    if not rows:
        console.print("\n[dim]No leases[/dim]")
        return

    table = Table()
    table.add_column("Port", justify="right", style="cyan")
    table.add_column("Agent")
    table.add_column("Reserved At (ms)", justify="right")
    table.add_column("Live")
    for row in rows:
        table.add_row(
            str(row.get("port", "")),
            row.get("agent_id", ""),
            str(row.get("reserved_at", "")),
            "[green]yes[/green]" if row.get("live") else "[dim]expired[/dim]",
        )
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from cybershuttle_tunnels import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
