"""Alternate recovery strategies tried after the primary sequence is exhausted."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from fixaudio.core.actions import CONTROL_TOOLS, ActionExecutor
from fixaudio.core.config import PhaseTimings
from fixaudio.core.errors import ConfigError, FixAudioError
from fixaudio.core.model import ConnectionState, DeviceIdentity, FallbackOutcome, FallbackResult
from fixaudio.core.prober import DeviceStatusProber
from fixaudio.core.runner import CommandRunner

LOGGER = logging.getLogger(__name__)

BUILTIN_OUTPUT = "Built-in Output"
SMART = "smart"
EXHAUSTIVE = "exhaustive"
MANUAL_PROMPT = "Press Enter after trying manual recovery, or 'q' to quit"
_APPLESCRIPT_TIMEOUT_S = 30.0


def manual_guidance(device_name: str) -> tuple[str, ...]:
    """Manual recovery steps shown when automated recovery fails."""
    return (
        "Automated recovery failed. Please try these manual steps:",
        f"1. Hardware reset: turn off {device_name}, wait 10 seconds, turn it back on and wait for reconnection",
        f"2. Bluetooth menu: click the Bluetooth icon, find \"{device_name}\", click Disconnect, wait 5 seconds, click Connect",
        f"3. System Settings → Bluetooth: Disconnect \"{device_name}\", wait for the status to change, then Connect",
        f"4. System Settings → Sound → Output: select a different device, wait 2 seconds, select \"{device_name}\" again",
        f"5. Last resort: remove/forget \"{device_name}\" in Bluetooth settings and pair it again",
    )


@dataclass
class FallbackContext:
    runner: CommandRunner
    identity: DeviceIdentity
    prober: DeviceStatusProber
    timings: PhaseTimings
    sleep: Callable[[float], None] = time.sleep
    prompt: Callable[[str], str] | None = None
    echo: Callable[[str], None] | None = None

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def pause(self, seconds: float) -> None:
        if self.dry_run:
            LOGGER.info("[DRY RUN] Would wait %g seconds", seconds)
            return
        if seconds > 0:
            self.sleep(seconds)

    def say(self, line: str) -> None:
        if self.echo is not None:
            self.echo(line)
        else:
            LOGGER.warning(line)


class FallbackStrategy:
    name = ""
    description = ""

    def __init__(self, context: FallbackContext) -> None:
        self.context = context

    def available(self) -> bool:
        raise NotImplementedError

    def run(self) -> FallbackResult:
        raise NotImplementedError

    def _ok(self, detail: str) -> FallbackResult:
        LOGGER.info("%s: %s", self.name, detail)
        return FallbackResult(self.name, True, detail)

    def _fail(self, detail: str) -> FallbackResult:
        LOGGER.warning("%s: %s", self.name, detail)
        return FallbackResult(self.name, False, detail)


class AudioCyclingStrategy(FallbackStrategy):
    """Switch the default output away from the headset and back."""

    name = "audio-cycling"
    description = "Cycle the system audio output device"
    executable = "audio-devices"

    def available(self) -> bool:
        return self.context.runner.available(self.executable)

    def _set_output(self, device: str) -> bool:
        return self.context.runner.run([self.executable, "output", "set", device], mutates=True).ok

    def run(self) -> FallbackResult:
        runner = self.context.runner
        current = runner.run([self.executable, "output", "get"])
        if not current.ok:
            return self._fail("Failed to get current audio device")
        original = current.stdout.strip()
        LOGGER.info("Current device: %s", original)

        if not self._set_output(BUILTIN_OUTPUT):
            return self._fail(f"Failed to switch to {BUILTIN_OUTPUT}")
        LOGGER.info("Switched to %s", BUILTIN_OUTPUT)
        self.context.pause(self.context.timings.cycle_pause_s)

        target = self.context.identity.name
        if not self._set_output(target):
            if original:
                self._set_output(original)
            return self._fail(f"Failed to switch back to {target}")
        return self._ok(f"Successfully cycled back to {target}")


class BlueutilStrategy(FallbackStrategy):
    """Disconnect and reconnect with blueutil instead of the primary tool."""

    name = "blueutil"
    description = "Reconnect using blueutil"

    def available(self) -> bool:
        return self.context.runner.available(CONTROL_TOOLS["blueutil"].executable)

    def run(self) -> FallbackResult:
        """Raises ``ActionFailed`` when either blueutil command fails."""
        ctx = self.context
        executor = ActionExecutor(
            ctx.runner,
            CONTROL_TOOLS["blueutil"],
            timeout_s=ctx.timings.command_timeout_s,
        )
        address = ctx.identity.address
        executor.disconnect(address).raise_for_outcome()
        ctx.pause(ctx.timings.disconnect_wait_s)

        executor.connect(address).raise_for_outcome()
        ctx.pause(ctx.timings.verify_wait_s)
        return self._ok("Device reconnected via blueutil")


def _applescript(device_name: str) -> str:
    name = device_name.replace("\\", "\\\\").replace('"', '\\"')
    row = f'row "{name}" of table 1 of scroll area 1 of group 1 of tab group 1 of window 1'
    return f"""
tell application "System Preferences"
    reveal pane "Bluetooth"
    delay 2
end tell

tell application "System Events"
    tell process "System Preferences"
        try
            click button "Disconnect" of {row}
            delay 3
            click button "Connect" of {row}
        end try
    end tell
end tell

tell application "System Preferences" to quit
"""


class AppleScriptStrategy(FallbackStrategy):
    """Drive the Bluetooth preference pane through GUI automation."""

    name = "applescript"
    description = "Toggle the device through GUI automation"
    executable = "osascript"

    def available(self) -> bool:
        return self.context.runner.available(self.executable)

    def run(self) -> FallbackResult:
        result = self.context.runner.run(
            [self.executable, "-e", _applescript(self.context.identity.name)],
            mutates=True,
            timeout_s=_APPLESCRIPT_TIMEOUT_S,
        )
        if not result.ok:
            return self._fail(f"AppleScript Bluetooth control failed: {result.output or result.outcome.value}")
        return self._ok("AppleScript Bluetooth control completed")


class CoreAudioRestartStrategy(FallbackStrategy):
    """Kill coreaudiod so launchd restarts the audio daemon. Needs root."""

    name = "core-audio-restart"
    description = "Restart the Core Audio daemon (requires root)"

    def available(self) -> bool:
        runner = self.context.runner
        return runner.is_privileged() and runner.available("pkill")

    def run(self) -> FallbackResult:
        result = self.context.runner.run(["pkill", "coreaudiod"], mutates=True)
        if not result.ok:
            return self._fail("Could not restart Core Audio daemon")
        self.context.pause(self.context.timings.disconnect_wait_s)
        return self._ok("Core Audio daemon restarted")


class ManualGuidanceStrategy(FallbackStrategy):
    """Show manual steps, optionally wait for the user, then re-probe."""

    name = "manual"
    description = "Interactive manual recovery guidance"

    def available(self) -> bool:
        return True

    def run(self) -> FallbackResult:
        ctx = self.context
        for line in manual_guidance(ctx.identity.name):
            ctx.say(line)

        if ctx.prompt is None or ctx.dry_run:
            return self._fail("manual steps shown; no confirmation available")

        reply = ctx.prompt(MANUAL_PROMPT)
        if reply.strip().lower() == "q":
            return self._fail("manual recovery skipped")

        LOGGER.info("Testing audio device after manual recovery...")
        state = ctx.prober.probe(ctx.identity, want_profile=True)
        if state.is_connected and state is not ConnectionState.CONNECTED_LOW_QUALITY:
            return self._ok("Manual recovery appears successful")
        return self._fail(f"Device status unclear after manual recovery ({state.value})")


STRATEGY_TYPES: tuple[type[FallbackStrategy], ...] = (
    AudioCyclingStrategy,
    BlueutilStrategy,
    AppleScriptStrategy,
    CoreAudioRestartStrategy,
    ManualGuidanceStrategy,
)


def build_strategies(context: FallbackContext) -> list[FallbackStrategy]:
    """Return the strategies in priority order, least invasive first."""
    return [strategy_type(context) for strategy_type in STRATEGY_TYPES]


class FallbackSelector:
    """Chooses and runs fallback strategies.

    ``smart`` runs the first strategy whose precondition holds. ``exhaustive``
    runs every available strategy in priority order until one succeeds.
    """

    def __init__(
        self,
        strategies: Sequence[FallbackStrategy],
        *,
        pause: Callable[[float], None] = time.sleep,
        pause_s: float = 1.0,
    ) -> None:
        self.strategies = tuple(strategies)
        self.pause = pause
        self.pause_s = pause_s

    def available(self) -> list[FallbackStrategy]:
        return [s for s in self.strategies if s.available()]

    def select(self) -> FallbackStrategy | None:
        for strategy in self.strategies:
            if strategy.available():
                return strategy
        return None

    def run(self, mode: str = SMART) -> FallbackOutcome:
        if mode == SMART:
            strategy = self.select()
            if strategy is None:
                LOGGER.warning("No fallback strategy is available")
                return FallbackOutcome(mode, ())
            LOGGER.info("Using %s (%s)", strategy.name, strategy.description)
            return FallbackOutcome(mode, (self._run_one(strategy),))

        if mode == EXHAUSTIVE:
            LOGGER.info("Primary strategy failed. Trying fallback strategies...")
            results = []
            for index, strategy in enumerate(self.available()):
                if index > 0:
                    self.pause(self.pause_s)
                result = self._run_one(strategy)
                results.append(result)
                if result.success:
                    break
            if not any(r.success for r in results):
                LOGGER.error("All fallback strategies failed")
            return FallbackOutcome(mode, tuple(results))

        raise ConfigError(f"Unknown fallback mode '{mode}'. Available: {SMART}, {EXHAUSTIVE}")

    def run_named(self, name: str) -> FallbackOutcome:
        for strategy in self.strategies:
            if strategy.name != name:
                continue
            if not strategy.available():
                return FallbackOutcome(name, (FallbackResult(name, False, "precondition not met"),))
            return FallbackOutcome(name, (self._run_one(strategy),))
        available = ", ".join(s.name for s in self.strategies)
        raise ConfigError(f"Unknown fallback strategy '{name}'. Available: {available}")

    def _run_one(self, strategy: FallbackStrategy) -> FallbackResult:
        LOGGER.info("Attempting: %s", strategy.name)
        try:
            result = strategy.run()
        except FixAudioError as exc:
            LOGGER.warning("Fallback strategy '%s' failed: %s", strategy.name, exc)
            return FallbackResult(strategy.name, False, str(exc))
        if result.success:
            LOGGER.info("Fallback strategy '%s' succeeded!", strategy.name)
        else:
            LOGGER.warning("Fallback strategy '%s' failed", strategy.name)
        return result
