"""Helpers shared by the CLI commands: wiring, root check, rendering."""

from __future__ import annotations

import os
import signal
import sys
import threading

import click
from rich.console import Console
from rich.live import Live
from rich.table import Table

from bwctl.discovery.arp import ArpTableDiscovery
from bwctl.errors import ApplyFailure
from bwctl.firewall.pf import PfAdapter
from bwctl.manager import BandwidthManager
from bwctl.rules.models import MonitorSample, Rule, RuleMode
from bwctl.shaping.reconciler import ReconcileResult

console = Console(stderr=True)

_APPLY_HINTS = {
    ApplyFailure.PERMISSION: "run bwctl with sudo",
    ApplyFailure.DISABLED: "pf could not be enabled; try `sudo pfctl -E`",
    ApplyFailure.UNAVAILABLE: "pfctl/dnctl not found; bwctl needs macOS pf and dummynet",
    ApplyFailure.SYNTAX: "the firewall rejected the generated rules; rerun with -v",
}


class SampleBoard:
    """Latest sample per ip, written by the monitor thread."""

    def __init__(self) -> None:
        self._latest: dict[str, MonitorSample] = {}
        self._lock = threading.Lock()

    def update(self, sample: MonitorSample) -> None:
        with self._lock:
            self._latest[sample.ip] = sample

    def snapshot(self) -> list[MonitorSample]:
        with self._lock:
            return list(self._latest.values())


def build_manager(
    ctx: click.Context,
    board: SampleBoard | None = None,
) -> BandwidthManager:
    config = ctx.obj["config"]
    firewall = PfAdapter(anchor=config.anchor, timeout=config.command_timeout)
    return BandwidthManager(
        config,
        firewall,
        discovery=ArpTableDiscovery(),
        on_sample=board.update if board else None,
    )


def require_root() -> None:
    if os.geteuid() != 0:
        console.print(
            "[red]This command requires root privileges. Please run with sudo.[/red]"
        )
        sys.exit(1)


def describe_rule(rule: Rule) -> str:
    if rule.mode is RuleMode.BLOCK:
        return "blocked"
    if rule.mode is RuleMode.MONITOR:
        return "monitored"
    parts = []
    if rule.upload_kbps is not None:
        parts.append(f"up {rule.upload_kbps} KB/s")
    if rule.download_kbps is not None:
        parts.append(f"down {rule.download_kbps} KB/s")
    return ", ".join(parts)


def format_rate(value: float | None) -> str:
    if value is None:
        return "-"
    return f"{value:.1f} KB/s"


def format_bytes(count: int) -> str:
    size = float(count)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1000:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1000
    return f"{size:.1f} TB"


def report_result(result: ReconcileResult) -> None:
    """Print the outcome of a reconciliation pass; exit 1 on failure."""
    if result.ok:
        if result.applied:
            diff = result.diff
            console.print(
                f"[green]Firewall updated[/green] "
                f"({len(diff.added)} added, {len(diff.changed)} changed, "
                f"{len(diff.removed)} removed)"
            )
        else:
            console.print("[dim]Firewall already up to date[/dim]")
        return

    error = result.error
    assert error is not None
    console.print(f"[red]Apply failed ({error.kind.value})[/red]: {error.detail}")
    hint = _APPLY_HINTS.get(error.kind)
    if hint:
        console.print(f"  [dim]{hint}[/dim]")
    sys.exit(1)


def rate_table(samples: list[MonitorSample]) -> Table:
    table = Table(title="Throughput", show_lines=False)
    table.add_column("IP", style="cyan")
    table.add_column("Up", justify="right")
    table.add_column("Down", justify="right")
    table.add_column("Total up", justify="right", style="dim")
    table.add_column("Total down", justify="right", style="dim")
    for sample in samples:
        table.add_row(
            sample.ip,
            format_rate(sample.rate_up_kbps),
            format_rate(sample.rate_down_kbps),
            format_bytes(sample.bytes_up),
            format_bytes(sample.bytes_down),
        )
    return table


def hold_foreground(
    manager: BandwidthManager,
    board: SampleBoard,
    ips: list[str],
    cleanup: list[str],
) -> None:
    """Show live throughput for ``ips`` until Ctrl+C, then drop ``cleanup`` rules."""
    for ip in ips:
        manager.monitor_loop.track(ip)

    stop_event = threading.Event()
    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _signal_handler(signum: int, frame: object) -> None:
        stop_event.set()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    console.print("  Press Ctrl+C to stop.\n")
    manager.start()
    interval = manager.monitor_loop.interval
    try:
        with Live(rate_table(board.snapshot()), console=console, auto_refresh=False) as live:
            while not stop_event.is_set():
                stop_event.wait(timeout=interval)
                live.update(rate_table(board.snapshot()), refresh=True)
    finally:
        manager.stop()
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)

    if cleanup:
        console.print("[dim]Removing temporary rules...[/dim]")
        for ip in cleanup:
            manager.remove(ip)
        report_result(manager.reconcile_now())
