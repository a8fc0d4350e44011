# Copyright 2024-2026 The wamupd Authors
# SPDX-License-Identifier: Apache-2.0

"""
wamupd Command Line Interface.

Usage:
    wamupd run              Run the bridge until SIGTERM/SIGINT/SIGUSR1
    wamupd publish          Publish host addresses and configured services once
    wamupd unpublish        Withdraw host addresses and configured services
    wamupd records          Show the records a configuration would publish
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Annotated

import pydantic
import typer
import yaml
from rich.console import Console
from rich.table import Table

from wamupd.config import DEFAULT_CONFIG_FILE, BridgeConfig
from wamupd.core.events import EventKind, LifecycleEvent

app = typer.Typer(
    name="wamupd",
    help="Publish mDNS services into wide-area DNS with dynamic updates",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def run_async(coro):
    """Run async function in sync context."""
    return asyncio.run(coro)


ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Configuration file, or set WAMUPD_CONFIG env var",
        show_default=DEFAULT_CONFIG_FILE,
    ),
]
BackendOption = Annotated[
    str | None,
    typer.Option(
        "--backend",
        "-b",
        help="Update transport (ddns, mock), or set WAMUPD_BACKEND env var",
        show_default="ddns",
    ),
]
IpAddressesOption = Annotated[
    bool,
    typer.Option(
        "--ip-addresses/--no-ip-addresses",
        help="Publish A/AAAA records for the target host",
    ),
]
LogLevelOption = Annotated[str, typer.Option("--log-level", help="Log level")]
JsonLogsOption = Annotated[bool, typer.Option("--json-logs", help="Log as JSON lines")]


# ============================================================================
# RUN COMMAND
# ============================================================================


@app.command()
def run(
    config_file: ConfigOption = None,
    backend: BackendOption = None,
    ip_addresses: IpAddressesOption = True,
    browse: Annotated[
        list[str] | None,
        typer.Option("--browse", help="mDNS service type to browse (repeatable)"),
    ] = None,
    log_level: LogLevelOption = "INFO",
    json_logs: JsonLogsOption = False,
):
    """
    Run the bridge.

    Publishes the host addresses and every discovered service, keeps their
    leases fresh, and withdraws everything on SIGTERM, SIGINT or SIGUSR1.

    Example:
        wamupd run -c /etc/wamupd.yaml --browse _ipp._tcp --browse _http._tcp
    """
    from wamupd.core.daemon import Bridge
    from wamupd.core.events import EventCollector

    _setup_logging(log_level, json_logs)
    config = _load_config(config_file, browse_types=tuple(browse) if browse else None)
    transport = _get_transport(backend, config)

    if not ip_addresses and not config.services and not config.browse_types:
        error_console.print("[red]✗ Nothing to publish[/red]")
        error_console.print("Add services or browse_types to the configuration, or use --ip-addresses")
        raise typer.Exit(1)

    events = EventCollector()
    events.subscribe(_print_event)
    bridge = Bridge(config, transport, events=events, publish_addresses=ip_addresses)

    console.print(
        f"\n[bold]Publishing into {config.zone_fqdn} via {config.server}:{config.port}[/bold]\n"
    )
    abandoned = run_async(bridge.run())

    if abandoned:
        error_console.print(f"[yellow]! {len(abandoned)} update(s) left unresolved[/yellow]")
        for entry in abandoned:
            error_console.print(f"  [dim]{entry.action.describe()}[/dim]")
        raise typer.Exit(1)
    console.print("[green]✓ All records withdrawn[/green]")


# ============================================================================
# PUBLISH / UNPUBLISH COMMANDS
# ============================================================================


@app.command()
def publish(
    config_file: ConfigOption = None,
    backend: BackendOption = None,
    ip_addresses: IpAddressesOption = True,
    log_level: LogLevelOption = "WARNING",
    json_logs: JsonLogsOption = False,
):
    """
    Publish host addresses and configured services once, then exit.

    Example:
        wamupd publish -c /etc/wamupd.yaml
    """
    from wamupd.core.daemon import Bridge

    _setup_logging(log_level, json_logs)
    config = _load_config(config_file)
    transport = _get_transport(backend, config)

    console.print(f"\n[bold]Publishing to {config.zone_fqdn}...[/bold]\n")

    async def do_publish():
        async with Bridge(config, transport, sources=[], publish_addresses=ip_addresses) as bridge:
            return await bridge.publish_once()

    result = run_async(do_publish())

    for address in result.addresses:
        console.print(f"[green]✓ {config.target_fqdn} -> {address}[/green]")
    for service in result.services:
        console.print(f"[green]✓ {service}[/green]")
    _print_failures(result.failed, result.abandoned)
    if not result.success:
        raise typer.Exit(1)
    console.print(f"\n[dim]Submitted {result.submitted} record update(s)[/dim]")


@app.command()
def unpublish(
    config_file: ConfigOption = None,
    backend: BackendOption = None,
    ip_addresses: IpAddressesOption = True,
    log_level: LogLevelOption = "WARNING",
    json_logs: JsonLogsOption = False,
):
    """
    Withdraw host addresses and configured services.

    Records that are already gone are not an error.

    Example:
        wamupd unpublish -c /etc/wamupd.yaml
    """
    from wamupd.core.daemon import Bridge

    _setup_logging(log_level, json_logs)
    config = _load_config(config_file)
    transport = _get_transport(backend, config)

    console.print(f"\n[bold]Unpublishing from {config.zone_fqdn}...[/bold]\n")

    async def do_unpublish():
        async with Bridge(config, transport, sources=[], publish_addresses=ip_addresses) as bridge:
            return await bridge.unpublish_once()

    result = run_async(do_unpublish())

    _print_failures(result.failed, result.abandoned)
    if not result.success:
        raise typer.Exit(1)
    console.print(f"[green]✓ Withdrew {result.submitted} record(s)[/green]")


# ============================================================================
# RECORDS COMMAND
# ============================================================================


@app.command()
def records(
    config_file: ConfigOption = None,
    ip_addresses: IpAddressesOption = True,
):
    """
    Show the records the configuration would publish, without sending anything.

    Example:
        wamupd records -c /etc/wamupd.yaml
    """
    from wamupd.core.actions import address_action, service_actions
    from wamupd.core.daemon import host_addresses
    from wamupd.core.models import ActionKind, ValidationError

    config = _load_config(config_file)
    addresses = host_addresses(config) if ip_addresses else []

    try:
        actions = [address_action(a, ActionKind.ADD, config) for a in addresses]
        for service in config.services:
            actions.extend(service_actions(service, ActionKind.ADD, config))
    except ValidationError as e:
        error_console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1) from None

    if not actions:
        console.print(f"[yellow]No records to publish in {config.zone_fqdn}[/yellow]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("TTL")
    table.add_column("Value")

    for action in actions:
        value = action.value
        if len(value) > 50:
            value = value[:47] + "..."
        table.add_row(action.target, action.record_type.value, str(action.ttl), value)

    console.print(table)
    console.print(f"\n[dim]Total: {len(actions)} record(s)[/dim]")


# ============================================================================
# HELPERS
# ============================================================================


def _setup_logging(level: str, json_output: bool) -> None:
    from wamupd.utils.logging import configure_logging

    configure_logging(level, json_output=json_output)


def _load_config(path: Path | None, **overrides) -> BridgeConfig:
    """Load configuration from a YAML file, or from WAMUPD_* env vars if there is none."""
    if path is None:
        env_path = os.environ.get("WAMUPD_CONFIG")
        if env_path:
            path = Path(env_path)
        elif Path(DEFAULT_CONFIG_FILE).exists():
            path = Path(DEFAULT_CONFIG_FILE)

    try:
        if path is None:
            config = BridgeConfig.from_env()
            if overrides.get("browse_types"):
                config = config.model_copy(update={"browse_types": overrides["browse_types"]})
            return config
        return BridgeConfig.from_yaml(path, **overrides)
    except FileNotFoundError:
        error_console.print(f"[red]✗ Could not find configuration file {path}[/red]")
        raise typer.Exit(1) from None
    except (pydantic.ValidationError, ValueError, yaml.YAMLError) as e:
        error_console.print(f"[red]✗ Invalid configuration: {e}[/red]")
        raise typer.Exit(1) from None


def _get_transport(backend_name: str | None, config: BridgeConfig):
    """Get update transport by name."""
    from wamupd.backends import TRANSPORTS, get_transport

    try:
        return get_transport(backend_name, config)
    except ValueError as e:
        error_console.print(f"[red]✗ {e}[/red]")
        error_console.print(f"Available backends: {', '.join(TRANSPORTS)}")
        raise typer.Exit(1) from None


def _print_event(event: LifecycleEvent) -> None:
    record = f"{event.target} {event.record_type.value if event.record_type else ''}".strip()
    if event.kind == EventKind.RECORD_ADDED:
        console.print(f"[green]Added {record}[/green]")
    elif event.kind == EventKind.RECORD_REMOVED:
        console.print(f"Deleted {record}")
    elif event.kind == EventKind.UPDATE_FAILED:
        error_console.print(f"[red]✗ {record}: {event.detail}[/red]")
    elif event.kind == EventKind.DRAIN_PROGRESS and event.outstanding:
        console.print(f"[dim]Outstanding count: {event.outstanding}[/dim]")


def _print_failures(failed: list[str], abandoned: list[str]) -> None:
    for item in failed:
        error_console.print(f"[red]✗ {item}[/red]")
    for item in abandoned:
        error_console.print(f"[yellow]! unresolved: {item}[/yellow]")


# ============================================================================
# VERSION
# ============================================================================


def version_callback(value: bool):
    if value:
        from wamupd import __version__

        console.print(f"wamupd version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version"),
    ] = None,
):
    """
    wamupd: Wide-Area mDNS Update

    Bridge services from the local link into a wide-area DNS zone.
    """
    from dotenv import load_dotenv

    load_dotenv()


if __name__ == "__main__":
    app()
