"""Monitor loop — periodic per-ip throughput sampling from firewall counters."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import NamedTuple

from bwctl.errors import AdapterUnavailable
from bwctl.firewall.base import FirewallAdapter
from bwctl.rules.models import MonitorSample, normalize_ip

logger = logging.getLogger(__name__)

_BYTES_PER_KB = 1000


class _Reading(NamedTuple):
    at: float
    bytes_up: int
    bytes_down: int


class MonitorLoop:
    """Polls cumulative counters for tracked ips and derives rates.

    The first sample for an ip has no rate (nothing to diff against). An ip
    with no counter data yet is reported at zero. Counters going backwards
    mean the anchor was reloaded; the loop re-baselines instead of
    reporting a negative rate.
    """

    def __init__(
        self,
        firewall: FirewallAdapter,
        interval: float = 1.0,
        on_sample: Callable[[MonitorSample], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._firewall = firewall
        self._interval = interval
        self._on_sample = on_sample
        self._clock = clock
        self._tracked: dict[str, None] = {}
        self._last: dict[str, _Reading] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval(self) -> float:
        return self._interval

    def track(self, ip: str) -> str:
        addr = normalize_ip(ip)
        with self._lock:
            self._tracked[addr] = None
        logger.debug("Tracking %s", addr)
        return addr

    def untrack(self, ip: str) -> bool:
        addr = normalize_ip(ip)
        with self._lock:
            self._last.pop(addr, None)
            if addr not in self._tracked:
                return False
            del self._tracked[addr]
        logger.debug("Stopped tracking %s", addr)
        return True

    def tracked(self) -> list[str]:
        with self._lock:
            return list(self._tracked)

    def poll_once(self) -> list[MonitorSample]:
        """Take one sample of every tracked ip."""
        samples: list[MonitorSample] = []
        for ip in self.tracked():
            sample = self._sample(ip)
            if sample is None:
                continue
            samples.append(sample)
            if self._on_sample:
                self._on_sample(sample)
        return samples

    def _sample(self, ip: str) -> MonitorSample | None:
        try:
            counters = self._firewall.read_counters(ip)
        except AdapterUnavailable as exc:
            logger.debug("No counters for %s: %s", ip, exc)
            counters = None

        now = self._clock()
        timestamp = time.time()

        with self._lock:
            if ip not in self._tracked:
                return None

            if counters is None:
                self._last.pop(ip, None)
                return MonitorSample(
                    ip=ip,
                    timestamp=timestamp,
                    bytes_up=0,
                    bytes_down=0,
                    rate_up_kbps=0.0,
                    rate_down_kbps=0.0,
                )

            previous = self._last.get(ip)
            self._last[ip] = _Reading(now, counters.bytes_up, counters.bytes_down)

        rate_up = rate_down = None
        if previous is not None:
            elapsed = now - previous.at
            delta_up = counters.bytes_up - previous.bytes_up
            delta_down = counters.bytes_down - previous.bytes_down
            if elapsed > 0 and delta_up >= 0 and delta_down >= 0:
                rate_up = delta_up / elapsed / _BYTES_PER_KB
                rate_down = delta_down / elapsed / _BYTES_PER_KB
            else:
                logger.debug("Counters for %s reset, re-baselining", ip)

        return MonitorSample(
            ip=ip,
            timestamp=timestamp,
            bytes_up=counters.bytes_up,
            bytes_down=counters.bytes_down,
            rate_up_kbps=rate_up,
            rate_down_kbps=rate_down,
        )

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="bwctl-monitor", daemon=True
        )
        self._thread.start()
        logger.info("Monitor started (interval %.1fs)", self._interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._interval + 2)
            self._thread = None
        logger.info("Monitor stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.poll_once()
            self._stop_event.wait(timeout=self._interval)
