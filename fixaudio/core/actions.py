"""Disconnect/connect actions against the Bluetooth control tool."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass

from fixaudio.core.errors import ConfigError
from fixaudio.core.mac import AddressFormats, normalize_mac
from fixaudio.core.model import ActionOutcome, ActionResult, ConnectionState
from fixaudio.core.runner import CommandRunner

LOGGER = logging.getLogger(__name__)

_ERROR_MARKERS = ("not found", "not available", "invalid", "error", "usage", "unknown")
_BLUETOOTHCTL_CONNECTED_RE = re.compile(r"^\s*Connected:\s*(yes|no)\s*$", re.IGNORECASE | re.MULTILINE)


def _parse_bluetoothconnector(output: str) -> ConnectionState | None:
    text = output.strip().lower()
    if not text or any(marker in text for marker in _ERROR_MARKERS):
        return None
    if "disconnected" in text or "not connected" in text or "false" in text:
        return ConnectionState.DISCONNECTED
    if "connected" in text or "true" in text:
        return ConnectionState.CONNECTED
    return None


def _parse_blueutil(output: str) -> ConnectionState | None:
    text = output.strip()
    if text == "1":
        return ConnectionState.CONNECTED
    if text == "0":
        return ConnectionState.DISCONNECTED
    return None


def _parse_bluetoothctl_info(output: str) -> ConnectionState | None:
    match = _BLUETOOTHCTL_CONNECTED_RE.search(output)
    if not match:
        return None
    if match.group(1).lower() == "yes":
        return ConnectionState.CONNECTED
    return ConnectionState.DISCONNECTED


@dataclass(frozen=True)
class ControlTool:
    key: str
    executable: str
    status_args: tuple[str, ...]
    disconnect_args: tuple[str, ...]
    connect_args: tuple[str, ...]
    parse_status: Callable[[str], ConnectionState | None]

    def argv(self, args: tuple[str, ...], address: str) -> tuple[str, ...]:
        return (self.executable, *(a.format(address=address) for a in args))


CONTROL_TOOLS: dict[str, ControlTool] = {
    "bluetoothconnector": ControlTool(
        key="bluetoothconnector",
        executable="BluetoothConnector",
        status_args=("--status", "{address}"),
        disconnect_args=("--disconnect", "{address}"),
        connect_args=("--connect", "{address}", "--notify"),
        parse_status=_parse_bluetoothconnector,
    ),
    "blueutil": ControlTool(
        key="blueutil",
        executable="blueutil",
        status_args=("--is-connected", "{address}"),
        disconnect_args=("--disconnect", "{address}"),
        connect_args=("--connect", "{address}"),
        parse_status=_parse_blueutil,
    ),
    "bluetoothctl": ControlTool(
        key="bluetoothctl",
        executable="bluetoothctl",
        status_args=("info", "{address}"),
        disconnect_args=("disconnect", "{address}"),
        connect_args=("connect", "{address}"),
        parse_status=_parse_bluetoothctl_info,
    ),
}


def get_control_tool(key: str) -> ControlTool:
    tool = CONTROL_TOOLS.get(key.lower())
    if tool is None:
        available = ", ".join(sorted(CONTROL_TOOLS))
        raise ConfigError(f"Unknown control tool '{key}'. Available: {available}")
    return tool


class ActionExecutor:
    """Issues exactly one mutating command per call and classifies the outcome."""

    def __init__(
        self,
        runner: CommandRunner,
        tool: ControlTool,
        formats: AddressFormats | None = None,
        *,
        timeout_s: float | None = None,
    ) -> None:
        self.runner = runner
        self.tool = tool
        self.formats = formats or AddressFormats()
        self.timeout_s = timeout_s

    def disconnect(self, address: str) -> ActionResult:
        return self._act("disconnect", self.tool.disconnect_args, address)

    def connect(self, address: str) -> ActionResult:
        return self._act("connect", self.tool.connect_args, address)

    def _act(self, action: str, args: tuple[str, ...], address: str) -> ActionResult:
        canonical = normalize_mac(address)
        target = self.formats.preferred(canonical)
        LOGGER.info("%s %s via %s", action.capitalize(), target, self.tool.executable)
        result = self.runner.run(
            self.tool.argv(args, target),
            mutates=True,
            timeout_s=self.timeout_s,
        )
        if result.outcome is ActionOutcome.TOOL_MISSING:
            LOGGER.error("%s is not installed; cannot %s", self.tool.executable, action)
        elif not result.ok:
            LOGGER.error("%s failed (%s): %s", action.capitalize(), result.outcome.value, result.output)
        else:
            LOGGER.debug("%s command completed", action.capitalize())
        return ActionResult(
            action=action,
            address=target,
            outcome=result.outcome,
            diagnostic=result.output,
        )
