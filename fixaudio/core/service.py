"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from fixaudio.core.actions import ActionExecutor, get_control_tool
from fixaudio.core.config import RecoveryConfig
from fixaudio.core.discovery import DeviceDiscovery
from fixaudio.core.errors import ToolUnavailable
from fixaudio.core.fallback import (
    EXHAUSTIVE,
    SMART,
    FallbackContext,
    FallbackSelector,
    build_strategies,
    manual_guidance,
)
from fixaudio.core.mac import AddressFormats
from fixaudio.core.model import (
    DeviceIdentity,
    DiscoveredDevice,
    FallbackOutcome,
    RecoveryReport,
    StatusReport,
)
from fixaudio.core.prober import DeviceStatusProber
from fixaudio.core.runner import CommandRunner
from fixaudio.core.sequencer import CANCELLED, NOT_CONNECTED, PhaseListener, RecoverySequencer
from fixaudio.core.sources import (
    AudioDevicesSource,
    BluetoothctlSource,
    ControlStatusSource,
    ProbeSource,
    SystemProfilerSource,
)

LOGGER = logging.getLogger(__name__)

PRIMARY_METHOD = "primary"
_INSTALL_HINTS = {
    "BluetoothConnector": "brew install bluetoothconnector",
    "blueutil": "brew install blueutil",
    "audio-devices": "npm install -g @spotxyz/macos-audio-devices",
}

RunnerFactory = Callable[..., CommandRunner]


@dataclass
class _Components:
    runner: CommandRunner
    prober: DeviceStatusProber
    executor: ActionExecutor
    discovery: DeviceDiscovery
    sources: tuple[ProbeSource, ...]


class RecoveryService:
    def __init__(
        self,
        config: RecoveryConfig | None = None,
        *,
        runner_factory: RunnerFactory = CommandRunner,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        prompt: Callable[[str], str] | None = None,
        echo: Callable[[str], None] | None = None,
        cancel: threading.Event | None = None,
        on_transition: PhaseListener | None = None,
    ) -> None:
        self.config = config or RecoveryConfig()
        self.config.validate()
        self.runner_factory = runner_factory
        self.sleep = sleep
        self.clock = clock
        self.prompt = prompt
        self.echo = echo
        self.cancel = cancel
        self.on_transition = on_transition

    def run_recovery(self, **overrides: object) -> RecoveryReport:
        config = self.config.with_overrides(**overrides)
        parts = self._build(config)
        diagnostics: list[str] = []

        self._preflight(config, parts, diagnostics)
        identity = self._resolve_identity(config, config.identity(), parts, diagnostics)
        LOGGER.info("Target: %s (%s)", identity.name, identity.address)

        sequencer = RecoverySequencer(
            parts.prober,
            parts.executor,
            config.timings,
            max_attempts=config.max_attempts,
            dry_run=config.dry_run,
            sleep=self.sleep,
            clock=self.clock,
            cancel=self.cancel,
            on_transition=self.on_transition,
        )
        run = sequencer.run(identity)
        attempts_used = len(run.attempts)

        if run.succeeded:
            LOGGER.info("Audio quality restored on attempt %d", attempts_used)
            return RecoveryReport(
                identity=identity,
                success=True,
                attempts_used=attempts_used,
                method_used=PRIMARY_METHOD,
                reason=None,
                attempts=run.attempts,
                diagnostics=tuple(diagnostics),
                dry_run=config.dry_run,
            )

        reason = CANCELLED if run.cancelled else run.last_reason
        fallback: FallbackOutcome | None = None
        if reason == NOT_CONNECTED:
            LOGGER.warning("Device %s is not connected; skipping fallback strategies", identity.address)
            diagnostics.append("device not connected; fallback strategies skipped")
        elif config.fallbacks_enabled and not run.cancelled:
            fallback = self._selector(config, parts, identity).run(config.fallback_mode)
            if fallback.succeeded:
                return RecoveryReport(
                    identity=identity,
                    success=True,
                    attempts_used=attempts_used,
                    method_used=fallback.succeeded,
                    reason=reason,
                    attempts=run.attempts,
                    fallback=fallback,
                    diagnostics=tuple(diagnostics),
                    dry_run=config.dry_run,
                )
            if not fallback.results:
                diagnostics.append("no fallback strategy was available")

        LOGGER.error("Failed to restore audio quality (%s)", reason)
        return RecoveryReport(
            identity=identity,
            success=False,
            attempts_used=attempts_used,
            method_used=None,
            reason=reason,
            attempts=run.attempts,
            fallback=fallback,
            guidance=manual_guidance(identity.name),
            diagnostics=tuple(diagnostics),
            dry_run=config.dry_run,
        )

    def probe_status(self, address: str | None = None) -> StatusReport:
        identity = self._identity_for(address)
        return self._build(self.config).prober.report(identity, want_profile=True)

    def discover_devices(self) -> list[DiscoveredDevice]:
        return self._build(self.config).discovery.discover()

    def find_devices(self, hints: Sequence[str] | None = None) -> list[DiscoveredDevice]:
        if not hints:
            hints = (*self.config.name_hints, self.config.name)
        return self._build(self.config).discovery.find_by_name_hint(hints)

    def fallback_strategies(self) -> list[tuple[str, str, bool]]:
        parts = self._build(self.config)
        selector = self._selector(self.config, parts, self.config.identity())
        return [(s.name, s.description, s.available()) for s in selector.strategies]

    def run_fallback(self, name: str, *, dry_run: bool = False) -> FallbackOutcome:
        config = self.config.with_overrides(dry_run=dry_run)
        parts = self._build(config)
        selector = self._selector(config, parts, config.identity())
        if name == SMART:
            return selector.run(SMART)
        if name in (EXHAUSTIVE, "all"):
            return selector.run(EXHAUSTIVE)
        return selector.run_named(name)

    def _identity_for(self, address: str | None) -> DeviceIdentity:
        if address is None:
            return self.config.identity()
        return DeviceIdentity.from_address(address, self.config.name, self.config.name_hints)

    def _build(self, config: RecoveryConfig) -> _Components:
        runner = self.runner_factory(dry_run=config.dry_run, timeout_s=config.timings.command_timeout_s)
        formats = AddressFormats()
        tool = get_control_tool(config.control_tool)
        factories: dict[str, Callable[[], ProbeSource]] = {
            "control": lambda: ControlStatusSource(runner, tool, formats),
            "system_profiler": lambda: SystemProfilerSource(runner),
            "audio_devices": lambda: AudioDevicesSource(runner),
            "bluetoothctl": lambda: BluetoothctlSource(runner),
        }
        sources = tuple(factories[name]() for name in config.probe_sources)
        return _Components(
            runner=runner,
            prober=DeviceStatusProber(sources),
            executor=ActionExecutor(runner, tool, formats, timeout_s=config.timings.command_timeout_s),
            discovery=DeviceDiscovery([SystemProfilerSource(runner), BluetoothctlSource(runner)]),
            sources=sources,
        )

    def _selector(
        self,
        config: RecoveryConfig,
        parts: _Components,
        identity: DeviceIdentity,
    ) -> FallbackSelector:
        context = FallbackContext(
            runner=parts.runner,
            identity=identity,
            prober=parts.prober,
            timings=config.timings,
            sleep=self.sleep,
            prompt=self.prompt,
            echo=self.echo,
        )
        pause = self.sleep if not config.dry_run else (lambda _seconds: None)
        return FallbackSelector(build_strategies(context), pause=pause, pause_s=config.timings.fallback_pause_s)

    def _preflight(self, config: RecoveryConfig, parts: _Components, diagnostics: list[str]) -> None:
        LOGGER.info("Performing pre-flight checks...")
        missing = [s for s in parts.sources if not parts.runner.available(s.executable)]
        for source in missing:
            diagnostics.append(f"probe source '{source.name}' unavailable: {source.executable} not found")
        if len(missing) == len(parts.sources):
            executables = ", ".join(sorted({s.executable for s in parts.sources}))
            raise ToolUnavailable(
                f"No device status tool is available (looked for: {executables}). "
                f"Install BluetoothConnector with: {_INSTALL_HINTS['BluetoothConnector']}"
            )

        executable = parts.executor.tool.executable
        if not parts.runner.available(executable):
            hint = _INSTALL_HINTS.get(executable)
            message = f"control tool {executable} not found"
            if hint:
                message += f"; install with: {hint}"
            LOGGER.warning(message)
            diagnostics.append(message)

        if config.fallbacks_enabled and executable != "blueutil" and not parts.runner.available("blueutil"):
            diagnostics.append(f"optional tool blueutil not found; install with: {_INSTALL_HINTS['blueutil']}")

    def _resolve_identity(
        self,
        config: RecoveryConfig,
        identity: DeviceIdentity,
        parts: _Components,
        diagnostics: list[str],
    ) -> DeviceIdentity:
        devices = parts.discovery.discover()
        if not devices or any(d.address == identity.address for d in devices):
            return identity

        LOGGER.warning("Target device %s not found in paired Bluetooth devices", identity.address)
        hints = (*identity.name_hints, identity.name)
        candidates = parts.discovery.find_by_name_hint(hints)
        if not candidates:
            diagnostics.append(f"target {identity.address} not found and no device matched the name hints")
            return identity

        if config.auto_select and len(candidates) == 1:
            chosen = candidates[0]
            LOGGER.info("Auto-selected %s (%s)", chosen.name, chosen.address)
            diagnostics.append(f"auto-selected {chosen.address} ({chosen.name})")
            return DeviceIdentity.from_address(
                chosen.address,
                chosen.name,
                identity.name_hints,
                auto_detected=True,
            )

        for candidate in candidates:
            diagnostics.append(f"candidate device: {candidate.address} ({candidate.name})")
        return identity
