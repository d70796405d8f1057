"""CLI command: bwctl restore — re-apply persisted rules (e.g. at boot)."""

from __future__ import annotations

import click

from bwctl.cli.common import build_manager, console, report_result, require_root


@click.command()
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Load persisted rules and reload the anchor with exactly those."""
    require_root()
    manager = build_manager(ctx)
    result = manager.restore(apply=True)
    count = len(manager.store.list_rules())
    console.print(
        f"[bold]bwctl[/bold] restoring {count} persisted rule(s) "
        f"from [cyan]{manager.store.path}[/cyan]"
    )
    if result is not None:
        report_result(result)
