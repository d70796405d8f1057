"""DiscoveryAdapter protocol — all discovery implementations must satisfy this."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from bwctl.rules.models import Device


@runtime_checkable
class DiscoveryAdapter(Protocol):
    """Protocol for host discovery on a link."""

    def scan(self, interface: str) -> list[Device]:
        """Return the devices currently visible on ``interface``.

        Best effort: the list may be partial. Raises AdapterUnavailable
        when the interface or the discovery source cannot be used.
        """
        ...
