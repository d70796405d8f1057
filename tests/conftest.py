"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from bwctl.config import BwctlConfig
from bwctl.errors import ApplyError, ApplyFailure
from bwctl.firewall.base import Counters
from bwctl.rules.models import Device
from bwctl.rules.store import RuleStore


class FakeFirewall:
    """In-memory FirewallAdapter that records every apply."""

    def __init__(self) -> None:
        self.applied: list[str] = []
        self.counters: dict[str, Counters] = {}
        self.fail_with: ApplyError | None = None
        self.enabled = True

    @property
    def apply_count(self) -> int:
        return len(self.applied)

    @property
    def loaded(self) -> str | None:
        return self.applied[-1] if self.applied else None

    def apply(self, config_text: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.applied.append(config_text)

    def read_counters(self, ip: str) -> Counters | None:
        return self.counters.get(ip)

    def is_enabled(self) -> bool:
        return self.enabled


class FakeDiscovery:
    """DiscoveryAdapter returning a fixed device list."""

    def __init__(self, devices: list[Device] | None = None) -> None:
        self.devices = devices or []
        self.calls: list[str] = []

    def scan(self, interface: str) -> list[Device]:
        self.calls.append(interface)
        return list(self.devices)


@pytest.fixture
def firewall() -> FakeFirewall:
    return FakeFirewall()


@pytest.fixture
def make_discovery():
    return FakeDiscovery


@pytest.fixture
def rules_path(tmp_path: Path) -> Path:
    return tmp_path / "rules.conf"


@pytest.fixture
def store(rules_path: Path) -> RuleStore:
    return RuleStore(rules_path)


@pytest.fixture
def config(tmp_path: Path, rules_path: Path) -> BwctlConfig:
    return BwctlConfig(
        data_dir=tmp_path,
        rules_file=rules_path,
        anchor="test/bwctl",
        poll_interval=0.01,
        retry_interval=0.05,
        command_timeout=1.0,
    )


@pytest.fixture
def permission_error() -> ApplyError:
    return ApplyError(ApplyFailure.PERMISSION, "pfctl: Permission denied")
