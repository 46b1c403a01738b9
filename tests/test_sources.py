from __future__ import annotations

from fixaudio.core.actions import CONTROL_TOOLS
from fixaudio.core.mac import AddressFormats
from fixaudio.core.model import ActionOutcome, CommandResult, ConnectionState, DeviceIdentity
from fixaudio.core.sources import (
    AudioDevicesSource,
    BluetoothctlSource,
    ControlStatusSource,
    SystemProfilerSource,
    parse_system_profiler,
)

IDENTITY = DeviceIdentity.from_address("0C:E0:E4:86:0B:06", "PLT_BBTPRO", ("PLT_", "BackBeat"))

PROFILER_OUTPUT = """Bluetooth:

      Bluetooth Controller:
          Address: F0:18:98:11:22:33
          State: On
          Chipset: BCM_4350C2
          Discoverable: Off
      Connected:
          PLT_BBTPRO:
              Address: 0C:E0:E4:86:0B:06
              Vendor ID: 0x0055
              Minor Type: Headset
              Services: 0x980019 < HFP AVRCP A2DP ACL >
      Not Connected:
          Magic Keyboard:
              Address: 11:22:33:44:55:66
              Minor Type: Keyboard
"""

LEGACY_PROFILER_OUTPUT = """Bluetooth:

      Apple Bluetooth Software Version: 6.0.7f11
      Hardware, Features, and Settings:
          Address: F0-18-98-11-22-33
          Discoverable: Off
      Devices (Paired, Configured, etc.):
          PLT_BBTPRO:
              Address: 0c-e0-e4-86-0b-06
              Connected: Yes
              Services: Handsfree, Headset
"""


class ScriptedRunner:
    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls: list[tuple[str, ...]] = []
        self.dry_run = False

    def run(self, argv, *, mutates=False, timeout_s=None) -> CommandResult:
        cmd = tuple(argv)
        self.calls.append(cmd)
        return self.handler(cmd)


def _ok(cmd, stdout: str) -> CommandResult:
    return CommandResult(cmd, ActionOutcome.SUCCESS, 0, stdout=stdout)


def _missing(cmd) -> CommandResult:
    return CommandResult(cmd, ActionOutcome.TOOL_MISSING, stderr=f"{cmd[0]}: not found")


def test_parse_system_profiler_sections() -> None:
    entries = {e.name: e for e in parse_system_profiler(PROFILER_OUTPUT)}
    assert set(entries) == {"PLT_BBTPRO", "Magic Keyboard"}
    assert entries["PLT_BBTPRO"].address == "0C:E0:E4:86:0B:06"
    assert entries["PLT_BBTPRO"].connected is True
    assert entries["Magic Keyboard"].connected is False
    assert entries["PLT_BBTPRO"].profile_state() is ConnectionState.CONNECTED_HIGH_QUALITY


def test_parse_system_profiler_legacy_layout() -> None:
    entries = parse_system_profiler(LEGACY_PROFILER_OUTPUT)
    assert [e.name for e in entries] == ["PLT_BBTPRO"]
    assert entries[0].address == "0C:E0:E4:86:0B:06"
    assert entries[0].connected is True
    assert entries[0].profile_state() is ConnectionState.CONNECTED_LOW_QUALITY


def test_system_profiler_probe_and_listing() -> None:
    runner = ScriptedRunner(lambda cmd: _ok(cmd, PROFILER_OUTPUT))
    source = SystemProfilerSource(runner)

    result = source.probe(IDENTITY)
    assert result.state is ConnectionState.CONNECTED_HIGH_QUALITY
    assert "A2DP" in result.raw

    keyboard = DeviceIdentity.from_address("11:22:33:44:55:66", "Magic Keyboard")
    assert source.probe(keyboard).state is ConnectionState.DISCONNECTED

    stranger = DeviceIdentity.from_address("AA:AA:AA:AA:AA:AA", "Stranger")
    assert source.probe(stranger).state is None

    devices = {d.address: d for d in source.list_devices()}
    assert devices["0C:E0:E4:86:0B:06"].connected is True
    assert devices["11:22:33:44:55:66"].connected is False
    assert runner.calls[0] == ("system_profiler", "SPBluetoothDataType")


def test_system_profiler_missing_gives_no_judgment() -> None:
    source = SystemProfilerSource(ScriptedRunner(_missing))
    assert source.probe(IDENTITY).state is None
    assert source.list_devices() == []


def test_control_source_searches_formats_once() -> None:
    def handler(cmd):
        if cmd[2] == "0ce0e4860b06":
            return _ok(cmd, "Connected")
        return CommandResult(cmd, ActionOutcome.EXECUTION_FAILED, 1, stderr="Invalid address")

    runner = ScriptedRunner(handler)
    formats = AddressFormats()
    source = ControlStatusSource(runner, CONTROL_TOOLS["bluetoothconnector"], formats)

    assert source.probe(IDENTITY).state is ConnectionState.CONNECTED
    assert len(runner.calls) == 6
    assert formats.known(IDENTITY.address) == "0ce0e4860b06"

    assert source.probe(IDENTITY).state is ConnectionState.CONNECTED
    assert len(runner.calls) == 7
    assert runner.calls[-1] == ("BluetoothConnector", "--status", "0ce0e4860b06")


def test_control_source_reads_disconnected_as_disconnected() -> None:
    runner = ScriptedRunner(lambda cmd: _ok(cmd, "Disconnected"))
    source = ControlStatusSource(runner, CONTROL_TOOLS["bluetoothconnector"], AddressFormats())
    assert source.probe(IDENTITY).state is ConnectionState.DISCONNECTED
    assert len(runner.calls) == 1


def test_control_source_stops_when_tool_missing() -> None:
    runner = ScriptedRunner(_missing)
    source = ControlStatusSource(runner, CONTROL_TOOLS["bluetoothconnector"], AddressFormats())
    result = source.probe(IDENTITY)
    assert result.state is None
    assert len(runner.calls) == 1


def test_control_source_parses_bluetoothctl_info() -> None:
    info = "Device 0C:E0:E4:86:0B:06 (public)\n\tName: PLT_BBTPRO\n\tPaired: yes\n\tConnected: no\n"
    runner = ScriptedRunner(lambda cmd: _ok(cmd, info))
    source = ControlStatusSource(runner, CONTROL_TOOLS["bluetoothctl"], AddressFormats())
    assert source.probe(IDENTITY).state is ConnectionState.DISCONNECTED
    assert runner.calls[0] == ("bluetoothctl", "info", "0C:E0:E4:86:0B:06")


def test_audio_devices_matches_name() -> None:
    listing = "Built-in Output (Built-in)\nPLT_BBTPRO (Bluetooth)\n"
    source = AudioDevicesSource(ScriptedRunner(lambda cmd: _ok(cmd, listing)))
    assert source.probe(IDENTITY).state is ConnectionState.CONNECTED


def test_audio_devices_matches_hint_on_bluetooth_line() -> None:
    listing = "Built-in Output (Built-in)\nBackBeat PRO 2 (Bluetooth)\n"
    source = AudioDevicesSource(ScriptedRunner(lambda cmd: _ok(cmd, listing)))
    assert source.probe(IDENTITY).state is ConnectionState.CONNECTED


def test_audio_devices_absence_is_inconclusive() -> None:
    source = AudioDevicesSource(ScriptedRunner(lambda cmd: _ok(cmd, "Built-in Output (Built-in)\n")))
    assert source.probe(IDENTITY).state is None


def test_bluetoothctl_listing_marks_connected_section() -> None:
    def handler(cmd):
        if cmd == ("bluetoothctl", "devices", "Connected"):
            return _ok(cmd, "Device 0C:E0:E4:86:0B:06 PLT_BBTPRO\n")
        if cmd == ("bluetoothctl", "devices"):
            return _ok(cmd, "Device 0C:E0:E4:86:0B:06 PLT_BBTPRO\nDevice 11:22:33:44:55:66 Keyboard\n")
        return CommandResult(cmd, ActionOutcome.EXECUTION_FAILED, 1, stderr="Invalid command")

    source = BluetoothctlSource(ScriptedRunner(handler))
    devices = source.list_devices()
    assert [(d.address, d.connected) for d in devices] == [
        ("0C:E0:E4:86:0B:06", True),
        ("11:22:33:44:55:66", False),
    ]
    assert source.probe(IDENTITY).state is ConnectionState.CONNECTED


def test_bluetoothctl_missing_returns_empty() -> None:
    runner = ScriptedRunner(_missing)
    source = BluetoothctlSource(runner)
    assert source.list_devices() == []
    assert source.probe(IDENTITY).state is None
