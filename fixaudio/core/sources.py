"""Read-only probe sources.

Each source wraps one external query and turns its free-text output into a
typed judgment. Text matching stays inside this module so sources can be
replaced with fakes in tests.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from fixaudio.core.actions import ControlTool
from fixaudio.core.errors import InvalidAddressFormat
from fixaudio.core.mac import AddressFormats, normalize_mac
from fixaudio.core.model import ActionOutcome, ConnectionState, DeviceIdentity, DiscoveredDevice, ProbeResult
from fixaudio.core.runner import CommandRunner

LOGGER = logging.getLogger(__name__)

_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})\s+(.+)$", re.IGNORECASE)
_ADAPTER_KEYS = frozenset({"chipset", "firmware version", "discoverable"})
_LOW_QUALITY_MARKERS = ("HFP", "HSP", "HANDS-FREE", "HANDSFREE")


class ProbeSource(Protocol):
    name: str
    executable: str

    def probe(self, identity: DeviceIdentity) -> ProbeResult:
        """Return this source's judgment about ``identity``."""


class InventorySource(ProbeSource, Protocol):
    def list_devices(self) -> list[DiscoveredDevice]:
        """Return every device this source knows about."""


class ControlStatusSource:
    """Status query through the configured Bluetooth control tool."""

    name = "control"

    def __init__(self, runner: CommandRunner, tool: ControlTool, formats: AddressFormats) -> None:
        self.runner = runner
        self.tool = tool
        self.formats = formats
        self.executable = tool.executable

    def probe(self, identity: DeviceIdentity) -> ProbeResult:
        attempts: list[str] = []
        for variant in self.formats.candidates(identity.address):
            result = self.runner.run(self.tool.argv(self.tool.status_args, variant))
            if result.outcome in (ActionOutcome.TOOL_MISSING, ActionOutcome.TIMEOUT):
                return ProbeResult(self.name, result.output, None)

            state = self.tool.parse_status(result.output) if result.ok else None
            if state is not None:
                if self.formats.known(identity.address) is None:
                    LOGGER.debug("%s accepts address format %s", self.executable, variant)
                    self.formats.remember(identity.address, variant)
                return ProbeResult(self.name, result.output, state, confidence=0.9)
            attempts.append(f"{variant}: {result.output}")

        LOGGER.debug("%s rejected every address format for %s", self.executable, identity.address)
        return ProbeResult(self.name, "\n".join(attempts), None)


@dataclass
class ProfilerEntry:
    name: str
    indent: int
    section_connected: bool | None
    properties: dict[str, str] = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)

    @property
    def address(self) -> str | None:
        value = self.properties.get("address")
        if value is None:
            return None
        try:
            return normalize_mac(value)
        except InvalidAddressFormat:
            return None

    @property
    def is_adapter(self) -> bool:
        return self.name == "Bluetooth Controller" or bool(_ADAPTER_KEYS & self.properties.keys())

    @property
    def connected(self) -> bool | None:
        if self.section_connected is not None:
            return self.section_connected
        value = self.properties.get("connected")
        if value is not None:
            return value.strip().lower() in ("yes", "true")
        return None

    def profile_state(self) -> ConnectionState:
        text = " ".join(self.lines).upper()
        if "A2DP" in text:
            return ConnectionState.CONNECTED_HIGH_QUALITY
        if any(marker in text for marker in _LOW_QUALITY_MARKERS):
            return ConnectionState.CONNECTED_LOW_QUALITY
        return ConnectionState.CONNECTED


def parse_system_profiler(text: str) -> list[ProfilerEntry]:
    """Parse ``system_profiler SPBluetoothDataType`` output into device blocks.

    Handles both layouts: devices grouped under ``Connected:`` / ``Not
    Connected:`` headers, and older output with a ``Connected: Yes`` property
    per device.
    """
    entries: list[ProfilerEntry] = []
    section: tuple[int, bool] | None = None
    current: ProfilerEntry | None = None

    for raw in text.splitlines():
        if not raw.strip():
            continue
        indent = len(raw) - len(raw.lstrip())
        line = raw.strip()

        if section is not None and indent <= section[0]:
            section = None
        if current is not None and indent <= current.indent:
            current = None

        if line in ("Connected:", "Not Connected:"):
            section = (indent, line == "Connected:")
            current = None
            continue

        key, sep, value = line.partition(":")
        if sep and not value.strip():
            current = ProfilerEntry(
                name=key.strip(),
                indent=indent,
                section_connected=section[1] if section else None,
            )
            entries.append(current)
            continue

        if current is not None:
            current.lines.append(line)
            if sep:
                current.properties.setdefault(key.strip().lower(), value.strip())

    return [e for e in entries if e.address is not None and not e.is_adapter]


class SystemProfilerSource:
    """macOS system device inventory."""

    name = "system_profiler"
    executable = "system_profiler"

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def _entries(self) -> tuple[str, list[ProfilerEntry]] | None:
        result = self.runner.run([self.executable, "SPBluetoothDataType"])
        if not result.ok:
            return None
        return result.stdout, parse_system_profiler(result.stdout)

    def probe(self, identity: DeviceIdentity) -> ProbeResult:
        loaded = self._entries()
        if loaded is None:
            return ProbeResult(self.name, "", None)
        raw, entries = loaded
        for entry in entries:
            if entry.address != identity.address:
                continue
            block = "\n".join(entry.lines)
            connected = entry.connected
            if connected is None:
                return ProbeResult(self.name, block, None)
            if not connected:
                return ProbeResult(self.name, block, ConnectionState.DISCONNECTED, confidence=0.8)
            state = entry.profile_state()
            LOGGER.debug("system_profiler judged %s as %s", identity.address, state.value)
            return ProbeResult(self.name, block, state, confidence=0.6 if state.has_profile else 0.8)
        return ProbeResult(self.name, raw, None)

    def list_devices(self) -> list[DiscoveredDevice]:
        loaded = self._entries()
        if loaded is None:
            return []
        return [
            DiscoveredDevice(address=e.address or "", name=e.name, connected=e.connected, source=self.name)
            for e in loaded[1]
        ]


class AudioDevicesSource:
    """System audio output inventory (``audio-devices list``)."""

    name = "audio_devices"
    executable = "audio-devices"

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def probe(self, identity: DeviceIdentity) -> ProbeResult:
        result = self.runner.run([self.executable, "list"])
        if not result.ok:
            return ProbeResult(self.name, result.output, None)

        device_name = identity.name.lower()
        hints = [h.lower() for h in identity.name_hints if h]
        for line in result.stdout.splitlines():
            lowered = line.lower()
            if device_name and device_name in lowered:
                return ProbeResult(self.name, line.strip(), ConnectionState.CONNECTED, confidence=0.5)
            if "bluetooth" in lowered and any(h in lowered for h in hints):
                return ProbeResult(self.name, line.strip(), ConnectionState.CONNECTED, confidence=0.4)
        return ProbeResult(self.name, result.stdout, None)


class BluetoothctlSource:
    """BlueZ device listings."""

    name = "bluetoothctl"
    executable = "bluetoothctl"

    _commands = (
        ("bluetoothctl", "devices", "Connected"),
        ("bluetoothctl", "devices"),
        ("bluetoothctl", "paired-devices"),
    )

    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    def list_devices(self) -> list[DiscoveredDevice]:
        seen: set[str] = set()
        devices: list[DiscoveredDevice] = []

        for cmd in self._commands:
            result = self.runner.run(cmd)
            if result.outcome is ActionOutcome.TOOL_MISSING:
                return []
            if not result.ok:
                LOGGER.debug("%s -> %s", " ".join(cmd), result.output)
                continue

            connected = cmd[-1] == "Connected"
            for line in result.stdout.splitlines():
                match = _DEVICE_LINE_RE.match(line.strip())
                if not match:
                    continue
                mac, name = match.group(1).upper(), match.group(2).strip()
                if mac in seen:
                    continue
                seen.add(mac)
                devices.append(DiscoveredDevice(address=mac, name=name, connected=connected, source=self.name))

        return devices

    def probe(self, identity: DeviceIdentity) -> ProbeResult:
        for device in self.list_devices():
            if device.address != identity.address:
                continue
            state = ConnectionState.CONNECTED if device.connected else ConnectionState.DISCONNECTED
            return ProbeResult(self.name, f"Device {device.address} {device.name}", state, confidence=0.7)
        return ProbeResult(self.name, "", None)
