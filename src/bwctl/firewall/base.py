"""FirewallAdapter protocol — all firewall backends must satisfy this."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Counters:
    """Cumulative byte counters for one ip since its rules were loaded."""

    bytes_up: int = 0
    bytes_down: int = 0


@runtime_checkable
class FirewallAdapter(Protocol):
    """Protocol for the kernel firewall facility that owns the anchor."""

    def apply(self, config_text: str) -> None:
        """Load ``config_text`` into the owned anchor and enable it.

        Raises ApplyError. The load replaces the whole anchor at once.
        """
        ...

    def read_counters(self, ip: str) -> Counters | None:
        """Counters for ``ip``, or None when the anchor has no data for it.

        Raises AdapterUnavailable if the counter source cannot be queried.
        """
        ...

    def is_enabled(self) -> bool:
        """Whether the firewall engine is currently enabled."""
        ...
