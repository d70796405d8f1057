"""CLI commands: bwctl limit / bwctl block — shape or cut off one device."""

from __future__ import annotations

import sys

import click

from bwctl.cli.common import (
    SampleBoard,
    build_manager,
    console,
    describe_rule,
    hold_foreground,
    report_result,
    require_root,
)
from bwctl.errors import ValidationError


@click.command()
@click.argument("ip")
@click.option("--upload", "-u", type=int, default=None, help="Upload limit in KB/s.")
@click.option(
    "--download", "-d", type=int, default=None, help="Download limit in KB/s."
)
@click.option(
    "--persistent",
    "-p",
    is_flag=True,
    help="Keep the limit across restarts and reboots.",
)
@click.pass_context
def limit(
    ctx: click.Context,
    ip: str,
    upload: int | None,
    download: int | None,
    persistent: bool,
) -> None:
    """Limit the bandwidth of the device at IP."""
    require_root()
    board = SampleBoard()
    manager = build_manager(ctx, board)
    manager.restore(apply=False)

    try:
        rule = manager.limit(ip, upload, download, persistent)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[bold]bwctl[/bold] limiting [cyan]{rule.ip}[/cyan]: {describe_rule(rule)}")
    report_result(manager.reconcile_now(force=True))

    if persistent:
        console.print("  [dim]Saved; re-applied on `bwctl restore`.[/dim]")
        return

    hold_foreground(manager, board, ips=[rule.ip], cleanup=[rule.ip])


@click.command()
@click.argument("ip")
@click.option(
    "--persistent",
    "-p",
    is_flag=True,
    help="Keep the block across restarts and reboots.",
)
@click.pass_context
def block(ctx: click.Context, ip: str, persistent: bool) -> None:
    """Drop all traffic to and from the device at IP."""
    require_root()
    board = SampleBoard()
    manager = build_manager(ctx, board)
    manager.restore(apply=False)

    try:
        rule = manager.block(ip, persistent)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[bold]bwctl[/bold] blocking [cyan]{rule.ip}[/cyan]")
    report_result(manager.reconcile_now(force=True))

    if persistent:
        console.print("  [dim]Saved; re-applied on `bwctl restore`.[/dim]")
        return

    hold_foreground(manager, board, ips=[rule.ip], cleanup=[rule.ip])
