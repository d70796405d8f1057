"""Tests for throughput sampling."""

from __future__ import annotations

import threading

import pytest

from bwctl.errors import AdapterUnavailable, ValidationError
from bwctl.firewall.base import Counters
from bwctl.monitor.loop import MonitorLoop


class _Clock:
    def __init__(self, *times: float) -> None:
        self._times = list(times)

    def __call__(self) -> float:
        return self._times.pop(0)


def test_first_sample_has_no_rate_then_rate(firewall):
    loop = MonitorLoop(firewall, clock=_Clock(0.0, 1.0))
    loop.track("10.0.0.5")

    firewall.counters["10.0.0.5"] = Counters(bytes_up=1000, bytes_down=0)
    (first,) = loop.poll_once()
    firewall.counters["10.0.0.5"] = Counters(bytes_up=2000, bytes_down=4000)
    (second,) = loop.poll_once()

    assert first.rate_up_kbps is None and first.rate_down_kbps is None
    assert first.bytes_up == 1000
    assert second.rate_up_kbps == pytest.approx(1.0)
    assert second.rate_down_kbps == pytest.approx(4.0)


def test_ip_without_counters_reports_zero(firewall):
    loop = MonitorLoop(firewall, clock=_Clock(0.0))
    loop.track("10.0.0.5")
    (sample,) = loop.poll_once()
    assert sample.bytes_up == 0 and sample.bytes_down == 0
    assert sample.rate_up_kbps == 0.0 and sample.rate_down_kbps == 0.0


def test_counter_reset_rebaselines(firewall):
    loop = MonitorLoop(firewall, clock=_Clock(0.0, 1.0, 2.0))
    loop.track("10.0.0.5")

    firewall.counters["10.0.0.5"] = Counters(bytes_up=5000, bytes_down=5000)
    loop.poll_once()
    firewall.counters["10.0.0.5"] = Counters(bytes_up=100, bytes_down=100)
    (after_reset,) = loop.poll_once()
    firewall.counters["10.0.0.5"] = Counters(bytes_up=1100, bytes_down=100)
    (next_sample,) = loop.poll_once()

    assert after_reset.rate_up_kbps is None
    assert next_sample.rate_up_kbps == pytest.approx(1.0)
    assert next_sample.rate_down_kbps == pytest.approx(0.0)


def test_unavailable_counters_treated_as_absent(firewall):
    def boom(ip):
        raise AdapterUnavailable("pfctl gone")

    firewall.read_counters = boom
    loop = MonitorLoop(firewall, clock=_Clock(0.0))
    loop.track("10.0.0.5")
    (sample,) = loop.poll_once()
    assert sample.rate_up_kbps == 0.0


def test_untrack_stops_sampling(firewall):
    loop = MonitorLoop(firewall, clock=_Clock(0.0))
    loop.track("10.0.0.5")
    assert loop.untrack("10.0.0.5") is True
    assert loop.untrack("10.0.0.5") is False
    assert loop.poll_once() == []
    assert loop.tracked() == []


def test_track_rejects_bad_ip(firewall):
    loop = MonitorLoop(firewall)
    with pytest.raises(ValidationError):
        loop.track("not-an-ip")


def test_on_sample_callback(firewall):
    seen = []
    loop = MonitorLoop(firewall, on_sample=seen.append, clock=_Clock(0.0, 0.0))
    loop.track("10.0.0.5")
    loop.track("10.0.0.6")
    loop.poll_once()
    assert [s.ip for s in seen] == ["10.0.0.5", "10.0.0.6"]


def test_start_stop_thread(firewall):
    polled = threading.Event()
    loop = MonitorLoop(firewall, interval=0.01, on_sample=lambda s: polled.set())
    loop.track("10.0.0.5")
    loop.start()
    try:
        assert polled.wait(timeout=2)
    finally:
        loop.stop()
