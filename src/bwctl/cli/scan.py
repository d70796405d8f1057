"""CLI command: bwctl scan — list devices on the local network."""

from __future__ import annotations

import datetime

import click
from rich.table import Table

from bwctl.cli.common import build_manager, console, describe_rule


@click.command()
@click.option(
    "--interface",
    "-i",
    default=None,
    help="Network interface to scan (default: en0).",
)
@click.pass_context
def scan(ctx: click.Context, interface: str | None) -> None:
    """Discover devices on the link via the ARP table."""
    config = ctx.obj["config"]
    interface = interface or config.interface
    manager = build_manager(ctx)
    manager.restore(apply=False)

    console.print(f"[bold]bwctl[/bold] scanning [cyan]{interface}[/cyan]")
    network = manager.network_name(interface)
    if network:
        console.print(f"Network: [bold]{network}[/bold]")
    console.print()
    devices = manager.scan(interface)

    if not devices:
        console.print(
            "[yellow]No devices found.[/yellow] "
            "[dim](interface missing or ARP table empty; rerun with -v)[/dim]"
        )
        return

    table = Table(title="Devices", show_lines=False)
    table.add_column("IP", style="cyan")
    table.add_column("MAC")
    table.add_column("Hostname")
    table.add_column("Rule")
    table.add_column("Seen", style="dim")

    for device in devices:
        rule = manager.store.get(device.ip)
        seen = datetime.datetime.fromtimestamp(device.last_seen).strftime("%H:%M:%S")
        table.add_row(
            device.ip,
            device.mac,
            device.hostname or "[dim]unknown[/dim]",
            describe_rule(rule) if rule else "",
            seen,
        )

    console.print(table)
    console.print(f"\nTotal devices: {len(devices)}")
