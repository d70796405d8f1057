"""CLI command: bwctl remove <IP> — drop the rule for a device."""

from __future__ import annotations

import sys

import click

from bwctl.cli.common import build_manager, console, report_result, require_root
from bwctl.errors import ValidationError


@click.command()
@click.argument("ip")
@click.pass_context
def remove(ctx: click.Context, ip: str) -> None:
    """Remove any limit, block, or monitor rule for IP."""
    require_root()
    manager = build_manager(ctx)
    manager.restore(apply=False)

    try:
        removed = manager.remove(ip)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if removed:
        console.print(f"[bold]bwctl[/bold] removed rule for [cyan]{ip}[/cyan]")
    else:
        console.print(f"[yellow]No persisted rule for {ip}[/yellow]")

    # Reload anyway so leftovers from an earlier run are cleared too
    report_result(manager.reconcile_now(force=True))
