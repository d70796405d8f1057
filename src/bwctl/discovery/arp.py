"""ARP-table discovery — lists neighbours the kernel already knows about."""

from __future__ import annotations

import logging
import re
import socket
import subprocess
import time
from dataclasses import dataclass, field

import psutil

from bwctl.errors import AdapterUnavailable
from bwctl.rules.models import Device

logger = logging.getLogger(__name__)

_ARP_TIMEOUT = 5

# macOS: ? (192.168.1.1) at 0:11:22:33:44:55 on en0 ifscope [ethernet]
# Linux: ? (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0
_ARP_LINE_RE = re.compile(
    r"\((?P<ip>[0-9a-fA-F.:]+)\) at (?P<mac>[0-9a-fA-F:]+)(?: \[\w+\])? on (?P<iface>\S+)"
)

_BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"

# Current Wi-Fi Network: HomeNet  (older releases say "AirPort")
_NETWORK_RE = re.compile(r"^Current (?:Wi-Fi|AirPort) Network: (?P<name>.+)$")


@dataclass
class ArpTableDiscovery:
    """Reads ``arp -an`` for an interface and resolves hostnames.

    Hostname lookups are cached for the lifetime of the instance.
    """

    resolve_hostnames: bool = True
    _hostnames: dict[str, str] = field(default_factory=dict)

    def scan(self, interface: str) -> list[Device]:
        if interface not in psutil.net_if_addrs():
            raise AdapterUnavailable(f"Interface {interface} not found")

        try:
            result = subprocess.run(
                ["arp", "-an", "-i", interface],
                capture_output=True,
                text=True,
                timeout=_ARP_TIMEOUT,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            raise AdapterUnavailable(f"arp failed: {exc}") from exc

        now = time.time()
        devices: list[Device] = []
        for ip, mac in parse_arp_table(result.stdout, interface):
            hostname = self._hostname(ip) if self.resolve_hostnames else ""
            devices.append(Device(mac=mac, ip=ip, hostname=hostname, last_seen=now))

        logger.info("Found %d device(s) on %s", len(devices), interface)
        return devices

    def network_name(self, interface: str) -> str | None:
        """Name of the Wi-Fi network ``interface`` is joined to, if any."""
        try:
            result = subprocess.run(
                ["networksetup", "-getairportnetwork", interface],
                capture_output=True,
                text=True,
                timeout=_ARP_TIMEOUT,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as exc:
            logger.debug("networksetup failed: %s", exc)
            return None
        if result.returncode != 0:
            return None
        match = _NETWORK_RE.match(result.stdout.strip())
        return match.group("name").strip() if match else None

    def _hostname(self, ip: str) -> str:
        if ip not in self._hostnames:
            self._hostnames[ip] = _reverse_dns(ip)
        return self._hostnames[ip]


def parse_arp_table(text: str, interface: str | None = None) -> list[tuple[str, str]]:
    """Extract (ip, mac) pairs, skipping incomplete and broadcast entries."""
    entries: list[tuple[str, str]] = []
    for line in text.splitlines():
        match = _ARP_LINE_RE.search(line)
        if match is None:
            continue
        if interface and match.group("iface") != interface:
            continue
        mac = normalize_mac(match.group("mac"))
        if mac == _BROADCAST_MAC:
            continue
        entries.append((match.group("ip"), mac))
    return entries


def normalize_mac(mac: str) -> str:
    """Zero-pad and lowercase: ``0:1b:2:ff:a:b`` → ``00:1b:02:ff:0a:0b``."""
    return ":".join(part.zfill(2) for part in mac.lower().split(":"))


def _reverse_dns(ip: str) -> str:
    """Perform a PTR lookup for the given IP."""
    try:
        hostname, _aliases, _addrs = socket.gethostbyaddr(ip)
        return hostname
    except (socket.herror, socket.gaierror, OSError):
        return ""
