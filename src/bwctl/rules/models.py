"""Rule data models — immutable dataclasses used across the entire codebase."""

from __future__ import annotations

import enum
import ipaddress
import time
from collections.abc import Mapping
from dataclasses import dataclass, field

from bwctl.errors import ValidationError


class Direction(enum.Enum):
    """Traffic direction as seen from the managed device."""

    UP = "up"
    DOWN = "down"


class RuleMode(enum.Enum):
    """What a rule does to an ip. Modes are mutually exclusive per ip."""

    LIMIT = "limit"
    BLOCK = "block"
    MONITOR = "monitor"


class RuleState(enum.Enum):
    """Lifecycle of a rule against the firewall."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    REMOVING = "removing"
    REMOVED = "removed"
    FAILED = "failed"


@dataclass(frozen=True)
class Device:
    """A host seen on the link. ``mac`` is the stable identity."""

    mac: str
    ip: str
    hostname: str = ""
    last_seen: float = field(default_factory=time.time)


@dataclass(frozen=True)
class Rule:
    """Desired treatment of a single ip address."""

    ip: str
    mode: RuleMode = RuleMode.LIMIT
    upload_kbps: int | None = None
    download_kbps: int | None = None
    persistent: bool = False
    up_pipe: int | None = None
    down_pipe: int | None = None
    state: RuleState = RuleState.PENDING

    def limit(self, direction: Direction) -> int | None:
        if direction is Direction.UP:
            return self.upload_kbps
        return self.download_kbps

    def pipe(self, direction: Direction) -> int | None:
        if direction is Direction.UP:
            return self.up_pipe
        return self.down_pipe

    @property
    def shape(self) -> tuple[RuleMode, int | None, int | None]:
        """The part of a rule that determines the rendered firewall config."""
        return (self.mode, self.upload_kbps, self.download_kbps)


@dataclass(frozen=True)
class MonitorSample:
    """One throughput observation. Rates are None when there is no prior sample."""

    ip: str
    timestamp: float
    bytes_up: int
    bytes_down: int
    rate_up_kbps: float | None = None
    rate_down_kbps: float | None = None


RuleSet = Mapping[str, Rule]


def normalize_ip(ip: str) -> str:
    """Return the canonical text form of an IPv4/IPv6 address."""
    try:
        return str(ipaddress.ip_address(str(ip).strip()))
    except ValueError:
        raise ValidationError(f"Invalid IP address: {ip!r}") from None


def _normalize_limit(name: str, value: object) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} limit must be an integer, got {value!r}")
    if value < 0:
        raise ValidationError(f"{name} limit must not be negative, got {value}")
    # 0 means "no cap" in that direction
    return value or None


def make_rule(
    ip: str,
    upload: int | None = None,
    download: int | None = None,
    persistent: bool = False,
    mode: RuleMode = RuleMode.LIMIT,
) -> Rule:
    """Validate an intent and build a fresh PENDING rule.

    A limit rule needs at least one positive limit; block and monitor
    rules must not carry limits.
    """
    addr = normalize_ip(ip)
    up = _normalize_limit("upload", upload)
    down = _normalize_limit("download", download)

    if mode is RuleMode.LIMIT and up is None and down is None:
        raise ValidationError(
            f"Rule for {addr} needs an upload or download limit above zero"
        )
    if mode is not RuleMode.LIMIT and (up is not None or down is not None):
        raise ValidationError(f"A {mode.value} rule for {addr} cannot carry limits")

    return Rule(
        ip=addr,
        mode=mode,
        upload_kbps=up,
        download_kbps=down,
        persistent=bool(persistent),
    )


def ip_sort_key(ip: str) -> tuple[int, int]:
    """Numeric ordering key: IPv4 before IPv6, then by address value."""
    addr = ipaddress.ip_address(ip)
    return (addr.version, int(addr))
