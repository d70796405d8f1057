"""CLI command: bwctl monitor <IP> — live throughput of one device."""

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
from bwctl.rules.models import RuleMode


@click.command()
@click.argument("ip")
@click.option(
    "--persistent",
    "-p",
    is_flag=True,
    help="Keep the counting rules loaded after exit.",
)
@click.pass_context
def monitor(ctx: click.Context, ip: str, persistent: bool) -> None:
    """Show live upload/download rates for the device at IP."""
    require_root()
    board = SampleBoard()
    manager = build_manager(ctx, board)
    manager.restore(apply=False)

    try:
        rule = manager.monitor(ip, persistent)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(
        f"[bold]bwctl[/bold] monitoring [cyan]{rule.ip}[/cyan] ({describe_rule(rule)})"
    )
    report_result(manager.reconcile_now(force=True))

    # Only drop the counting rules we added; an existing limit stays
    temporary = rule.mode is RuleMode.MONITOR and not rule.persistent
    hold_foreground(
        manager,
        board,
        ips=[rule.ip],
        cleanup=[rule.ip] if temporary else [],
    )
