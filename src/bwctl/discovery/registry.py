"""Device registry — merges scan results by MAC address."""

from __future__ import annotations

import dataclasses
import logging
import threading

from bwctl.rules.models import Device

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Known devices keyed by MAC.

    A device that is missing from a scan is kept. When an ip moves to a
    different MAC, the previous holder loses the ip (``ip == ""``), so at
    most one device is active per ip.
    """

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}
        self._by_ip: dict[str, str] = {}
        self._lock = threading.Lock()

    def merge(self, devices: list[Device]) -> None:
        with self._lock:
            for device in devices:
                self._merge_one(device)

    def _merge_one(self, device: Device) -> None:
        previous = self._devices.get(device.mac)
        if previous is not None and previous.ip and previous.ip != device.ip:
            self._by_ip.pop(previous.ip, None)
            logger.info("%s moved from %s to %s", device.mac, previous.ip, device.ip)

        holder = self._by_ip.get(device.ip)
        if holder is not None and holder != device.mac:
            self._devices[holder] = dataclasses.replace(self._devices[holder], ip="")
            logger.info("%s now held by %s (was %s)", device.ip, device.mac, holder)

        hostname = device.hostname or (previous.hostname if previous else "")
        self._devices[device.mac] = dataclasses.replace(device, hostname=hostname)
        self._by_ip[device.ip] = device.mac

    def by_ip(self, ip: str) -> Device | None:
        """The active device currently holding ``ip``."""
        with self._lock:
            mac = self._by_ip.get(ip)
            return self._devices.get(mac) if mac else None

    def by_mac(self, mac: str) -> Device | None:
        with self._lock:
            return self._devices.get(mac)

    def devices(self) -> list[Device]:
        with self._lock:
            return list(self._devices.values())
