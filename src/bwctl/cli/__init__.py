"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from bwctl import __version__
from bwctl.config import BwctlConfig


@click.group()
@click.version_option(version=__version__, prog_name="bwctl")
@click.option(
    "--rules-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Persistence file for rules (default: XDG data dir).",
)
@click.option("--anchor", default=None, help="pf anchor owned by bwctl.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(
    ctx: click.Context,
    rules_file: str | None,
    anchor: str | None,
    verbose: bool,
) -> None:
    """bwctl — per-device bandwidth limits for your local network."""
    config = BwctlConfig.load()
    if rules_file:
        config.rules_file = Path(rules_file)
    if anchor:
        config.anchor = anchor
    config.verbose = verbose

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from bwctl.cli.limit import block, limit  # noqa: F811
    from bwctl.cli.monitor import monitor  # noqa: F811
    from bwctl.cli.remove import remove  # noqa: F811
    from bwctl.cli.restore import restore  # noqa: F811
    from bwctl.cli.scan import scan  # noqa: F811
    from bwctl.cli.status import status  # noqa: F811

    main.add_command(scan)
    main.add_command(monitor)
    main.add_command(limit)
    main.add_command(block)
    main.add_command(remove)
    main.add_command(status)
    main.add_command(restore)


_register_commands()
