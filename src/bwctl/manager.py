"""Bandwidth manager — maps user intents onto the store, reconciler, and monitor."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from bwctl.config import BwctlConfig
from bwctl.discovery.base import DiscoveryAdapter
from bwctl.discovery.registry import DeviceRegistry
from bwctl.errors import AdapterUnavailable, CompileError
from bwctl.firewall.base import Counters, FirewallAdapter
from bwctl.monitor.loop import MonitorLoop
from bwctl.rules.models import Device, MonitorSample, Rule, RuleMode
from bwctl.rules.store import RuleStore
from bwctl.shaping.reconciler import ReconcileResult, Reconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleStatus:
    """One row of ``status``: a rule plus what we know about its device."""

    rule: Rule
    device: Device | None = None
    counters: Counters | None = None


class BandwidthManager:
    """Owns the store, reconciler, monitor loop, and device registry.

    Intents mutate the Desired set and wake the reconcile worker; the worker
    is the only thread that drives applies. Without a running worker
    (one-shot CLI use), call ``reconcile_now()`` after the intents.

    Two processes driving the same anchor is not supported: whichever
    applies last wins.
    """

    def __init__(
        self,
        config: BwctlConfig,
        firewall: FirewallAdapter,
        discovery: DiscoveryAdapter | None = None,
        on_sample: Callable[[MonitorSample], None] | None = None,
        on_reconcile: Callable[[ReconcileResult], None] | None = None,
    ) -> None:
        self._config = config
        self._firewall = firewall
        self._discovery = discovery
        self._on_reconcile = on_reconcile
        self._store = RuleStore(config.rules_file)
        self._reconciler = Reconciler(self._store, firewall, anchor=config.anchor)
        self._monitor = MonitorLoop(
            firewall, interval=config.poll_interval, on_sample=on_sample
        )
        self._devices = DeviceRegistry()
        self._wake = threading.Event()
        self._stop_event = threading.Event()
        self._worker: threading.Thread | None = None

    @property
    def store(self) -> RuleStore:
        return self._store

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def monitor_loop(self) -> MonitorLoop:
        return self._monitor

    @property
    def devices(self) -> DeviceRegistry:
        return self._devices

    def restore(self, apply: bool = True) -> ReconcileResult | None:
        """Load persisted rules and, if ``apply``, force a full reload.

        The forced pass re-applies persisted rules even when the firewall was
        reset underneath us (reboot) and drops anything a previous run left
        in the anchor that is no longer wanted.
        """
        rules = self._store.load_persisted()
        for rule in rules.values():
            if rule.mode is RuleMode.MONITOR:
                self._monitor.track(rule.ip)
        if not apply:
            return None
        return self.reconcile_now(force=True)

    def scan(self, interface: str | None = None) -> list[Device]:
        """Discover devices; an unusable discovery source yields []."""
        interface = interface or self._config.interface
        if self._discovery is None:
            logger.warning("No discovery adapter configured")
            return []
        try:
            found = self._discovery.scan(interface)
        except AdapterUnavailable as exc:
            logger.warning("Scan of %s failed: %s", interface, exc)
            return []
        self._devices.merge(found)
        return found

    def network_name(self, interface: str | None = None) -> str | None:
        """Wi-Fi network name for ``interface``, when discovery can tell."""
        lookup = getattr(self._discovery, "network_name", None)
        if lookup is None:
            return None
        return lookup(interface or self._config.interface)

    def limit(
        self,
        ip: str,
        upload: int | None = None,
        download: int | None = None,
        persistent: bool = False,
    ) -> Rule:
        rule = self._store.upsert(ip, upload, download, persistent, RuleMode.LIMIT)
        self._request_reconcile()
        return rule

    def block(self, ip: str, persistent: bool = False) -> Rule:
        rule = self._store.upsert(ip, persistent=persistent, mode=RuleMode.BLOCK)
        self._request_reconcile()
        return rule

    def monitor(self, ip: str, persistent: bool = False) -> Rule:
        """Track ``ip``; add counting rules unless a rule already covers it.

        Limit and block rules already carry counters, so monitoring never
        replaces them.
        """
        existing = self._store.get(ip)
        if existing is not None and existing.mode is not RuleMode.MONITOR:
            rule = existing
        else:
            rule = self._store.upsert(ip, persistent=persistent, mode=RuleMode.MONITOR)
            self._request_reconcile()
        self._monitor.track(rule.ip)
        return rule

    def remove(self, ip: str) -> bool:
        removed = self._store.remove(ip)
        self._monitor.untrack(ip)
        if removed:
            self._request_reconcile()
        return removed

    def status(self) -> list[RuleStatus]:
        rows: list[RuleStatus] = []
        for rule in self._store.list_rules():
            try:
                counters = self._firewall.read_counters(rule.ip)
            except AdapterUnavailable as exc:
                logger.debug("No counters for %s: %s", rule.ip, exc)
                counters = None
            rows.append(
                RuleStatus(
                    rule=rule,
                    device=self._devices.by_ip(rule.ip),
                    counters=counters,
                )
            )
        return rows

    def firewall_enabled(self) -> bool:
        return self._firewall.is_enabled()

    def reconcile_now(self, force: bool = False) -> ReconcileResult:
        result = self._reconciler.reconcile(force=force)
        if self._on_reconcile:
            self._on_reconcile(result)
        return result

    def start(self) -> None:
        """Start the reconcile worker and the monitor loop."""
        if self._worker and self._worker.is_alive():
            return
        self._stop_event.clear()
        self._worker = threading.Thread(
            target=self._reconcile_loop, name="bwctl-reconcile", daemon=True
        )
        self._worker.start()
        self._monitor.start()

    def stop(self) -> None:
        """Stop both loops. An apply in flight finishes first."""
        self._stop_event.set()
        self._wake.set()
        self._monitor.stop()
        if self._worker:
            self._worker.join(timeout=self._config.command_timeout + 2)
            self._worker = None

    def _request_reconcile(self) -> None:
        self._wake.set()

    def _reconcile_loop(self) -> None:
        while not self._stop_event.is_set():
            # A failed pass is retried after retry_interval even without new intents
            timeout = self._config.retry_interval if self._reconciler.last_error else None
            self._wake.wait(timeout=timeout)
            self._wake.clear()
            if self._stop_event.is_set():
                break
            try:
                self.reconcile_now()
            except CompileError:
                logger.exception("Reconcile pass failed")
