"""Device discovery and name-hint matching."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from fixaudio.core.model import DiscoveredDevice
from fixaudio.core.sources import InventorySource

LOGGER = logging.getLogger(__name__)


def name_matches(name: str, hints: Iterable[str]) -> bool:
    lower_name = name.lower()
    return any(hint and hint.lower() in lower_name for hint in hints)


def match_score(device: DiscoveredDevice, hints: Sequence[str]) -> int:
    if not name_matches(device.name, hints):
        return 0
    if device.connected:
        return 3
    if device.connected is None:
        return 2
    return 1


class DeviceDiscovery:
    """Enumerates devices known to the inventory sources without filtering."""

    def __init__(self, sources: Sequence[InventorySource]) -> None:
        self.sources = tuple(sources)

    def discover(self) -> list[DiscoveredDevice]:
        merged: dict[str, DiscoveredDevice] = {}
        for source in self.sources:
            for device in source.list_devices():
                existing = merged.get(device.address)
                if existing is None:
                    merged[device.address] = device
                elif existing.connected is not True and device.connected is True:
                    merged[device.address] = DiscoveredDevice(
                        address=existing.address,
                        name=existing.name,
                        connected=True,
                        source=device.source,
                    )
        devices = list(merged.values())
        LOGGER.debug("Discovered %d device(s)", len(devices))
        return devices

    def find_by_name_hint(self, hints: Sequence[str]) -> list[DiscoveredDevice]:
        scored = [(match_score(d, hints), d) for d in self.discover()]
        matched = [(score, d) for score, d in scored if score > 0]
        matched.sort(key=lambda pair: (-pair[0], pair[1].name.lower()))
        return [d for _, d in matched]
