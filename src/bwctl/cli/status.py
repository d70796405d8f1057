"""CLI command: bwctl status — persisted rules and their counters."""

from __future__ import annotations

import click
from rich.table import Table

from bwctl.cli.common import build_manager, console, describe_rule, format_bytes


@click.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show persisted rules, firewall state, and byte counters."""
    manager = build_manager(ctx)
    manager.restore(apply=False)
    config = ctx.obj["config"]

    enabled = manager.firewall_enabled()
    state = "[green]enabled[/green]" if enabled else "[yellow]disabled or unknown[/yellow]"
    console.print(f"[bold]bwctl[/bold] anchor [cyan]{config.anchor}[/cyan], pf {state}")

    if manager.store.list_rules():
        # Fills in hostnames for the Host column
        manager.scan()
    rows = manager.status()
    if not rows:
        console.print("[dim]No persisted rules.[/dim]")
        return

    table = Table(title="Rules", show_lines=False)
    table.add_column("IP", style="cyan")
    table.add_column("Host")
    table.add_column("Rule")
    table.add_column("Persistent", justify="center")
    table.add_column("Bytes up", justify="right")
    table.add_column("Bytes down", justify="right")

    for row in rows:
        rule = row.rule
        host = row.device.hostname if row.device else ""
        up = format_bytes(row.counters.bytes_up) if row.counters else "-"
        down = format_bytes(row.counters.bytes_down) if row.counters else "-"
        table.add_row(
            rule.ip,
            host,
            describe_rule(rule),
            "yes" if rule.persistent else "no",
            up,
            down,
        )

    console.print(table)
