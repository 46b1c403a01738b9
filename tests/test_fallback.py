from __future__ import annotations

import pytest

from fixaudio.core.config import PhaseTimings
from fixaudio.core.errors import ConfigError
from fixaudio.core.fallback import (
    FallbackContext,
    FallbackSelector,
    build_strategies,
    manual_guidance,
)
from fixaudio.core.model import ActionOutcome, CommandResult, ConnectionState, DeviceIdentity

IDENTITY = DeviceIdentity.from_address("0C:E0:E4:86:0B:06", "PLT_BBTPRO")


class FakeRunner:
    def __init__(self, tools=(), handler=None, *, privileged: bool = False, dry_run: bool = False) -> None:
        self.tools = set(tools)
        self.handler = handler or (lambda cmd: "")
        self.privileged = privileged
        self.dry_run = dry_run
        self.calls: list[tuple[str, ...]] = []

    def available(self, executable: str) -> bool:
        return executable in self.tools

    def is_privileged(self) -> bool:
        return self.privileged

    def run(self, argv, *, mutates=False, timeout_s=None) -> CommandResult:
        cmd = tuple(argv)
        self.calls.append(cmd)
        if cmd[0] not in self.tools:
            return CommandResult(cmd, ActionOutcome.TOOL_MISSING, stderr=f"{cmd[0]}: not found")
        if mutates and self.dry_run:
            return CommandResult(cmd, ActionOutcome.SUCCESS, 0, dry_run=True)
        reply = self.handler(cmd)
        if reply is None:
            return CommandResult(cmd, ActionOutcome.EXECUTION_FAILED, 1, stderr="failed")
        return CommandResult(cmd, ActionOutcome.SUCCESS, 0, stdout=reply)


class FakeProber:
    def __init__(self, state: ConnectionState) -> None:
        self.state = state

    def probe(self, identity, *, want_profile=False) -> ConnectionState:
        return self.state


def _context(runner: FakeRunner, sleeps: list[float], **kwargs) -> FallbackContext:
    return FallbackContext(
        runner=runner,
        identity=IDENTITY,
        prober=kwargs.pop("prober", FakeProber(ConnectionState.UNKNOWN)),
        timings=PhaseTimings(),
        sleep=sleeps.append,
        **kwargs,
    )


def _selector(context: FallbackContext, pauses: list[float]) -> FallbackSelector:
    return FallbackSelector(build_strategies(context), pause=pauses.append, pause_s=1.0)


def test_strategies_are_in_priority_order() -> None:
    names = [s.name for s in build_strategies(_context(FakeRunner(), []))]
    assert names == ["audio-cycling", "blueutil", "applescript", "core-audio-restart", "manual"]


def test_smart_mode_runs_first_available_only() -> None:
    runner = FakeRunner(tools={"blueutil", "osascript"})
    sleeps: list[float] = []
    outcome = _selector(_context(runner, sleeps), []).run("smart")

    assert outcome.attempted == ("blueutil",)
    assert outcome.succeeded == "blueutil"
    assert runner.calls == [
        ("blueutil", "--disconnect", "0C:E0:E4:86:0B:06"),
        ("blueutil", "--connect", "0C:E0:E4:86:0B:06"),
    ]
    assert sleeps == [3.0, 2.0]


def test_manual_is_always_available_but_fails_without_prompt() -> None:
    lines: list[str] = []
    context = _context(FakeRunner(), [], echo=lines.append)
    outcome = _selector(context, []).run("smart")

    assert outcome.attempted == ("manual",)
    assert outcome.succeeded is None
    assert lines == list(manual_guidance("PLT_BBTPRO"))


def test_exhaustive_tries_each_available_with_pause() -> None:
    runner = FakeRunner(tools={"audio-devices", "blueutil"}, handler=lambda cmd: None)
    pauses: list[float] = []
    outcome = _selector(_context(runner, [], echo=lambda line: None), pauses).run("exhaustive")

    assert outcome.attempted == ("audio-cycling", "blueutil", "manual")
    assert outcome.succeeded is None
    assert pauses == [1.0, 1.0]


def test_exhaustive_stops_at_first_success() -> None:
    def handler(cmd):
        if cmd[:3] == ("audio-devices", "output", "get"):
            return None
        return ""

    runner = FakeRunner(tools={"audio-devices", "blueutil", "osascript"}, handler=handler)
    outcome = _selector(_context(runner, []), []).run("exhaustive")

    assert outcome.attempted == ("audio-cycling", "blueutil")
    assert outcome.succeeded == "blueutil"


def test_audio_cycling_switches_away_and_back() -> None:
    def handler(cmd):
        if cmd[2] == "get":
            return "PLT_BBTPRO\n"
        return ""

    runner = FakeRunner(tools={"audio-devices"}, handler=handler)
    sleeps: list[float] = []
    outcome = _selector(_context(runner, sleeps), []).run_named("audio-cycling")

    assert outcome.succeeded == "audio-cycling"
    assert runner.calls == [
        ("audio-devices", "output", "get"),
        ("audio-devices", "output", "set", "Built-in Output"),
        ("audio-devices", "output", "set", "PLT_BBTPRO"),
    ]
    assert sleeps == [2.0]


def test_audio_cycling_restores_original_on_failure() -> None:
    def handler(cmd):
        if cmd[2] == "get":
            return "External Speakers\n"
        if cmd[-1] == "PLT_BBTPRO":
            return None
        return ""

    runner = FakeRunner(tools={"audio-devices"}, handler=handler)
    outcome = _selector(_context(runner, []), []).run_named("audio-cycling")

    assert outcome.succeeded is None
    assert runner.calls[-1] == ("audio-devices", "output", "set", "External Speakers")


def test_core_audio_restart_requires_privilege() -> None:
    runner = FakeRunner(tools={"pkill"})
    selector = _selector(_context(runner, []), [])
    outcome = selector.run_named("core-audio-restart")
    assert outcome.results[0].detail == "precondition not met"
    assert runner.calls == []

    runner.privileged = True
    outcome = selector.run_named("core-audio-restart")
    assert outcome.succeeded == "core-audio-restart"
    assert runner.calls == [("pkill", "coreaudiod")]


def test_manual_with_confirmation_reprobes() -> None:
    prompts: list[str] = []

    def prompt(message: str) -> str:
        prompts.append(message)
        return ""

    context = _context(
        FakeRunner(),
        [],
        prober=FakeProber(ConnectionState.CONNECTED_HIGH_QUALITY),
        prompt=prompt,
        echo=lambda line: None,
    )
    outcome = _selector(context, []).run_named("manual")

    assert outcome.succeeded == "manual"
    assert len(prompts) == 1


def test_manual_quit_and_low_quality_fail() -> None:
    context = _context(
        FakeRunner(),
        [],
        prober=FakeProber(ConnectionState.CONNECTED_LOW_QUALITY),
        prompt=lambda message: "q",
        echo=lambda line: None,
    )
    selector = _selector(context, [])
    assert selector.run_named("manual").results[0].detail == "manual recovery skipped"

    context.prompt = lambda message: ""
    assert selector.run_named("manual").succeeded is None


def test_dry_run_fallback_does_not_sleep() -> None:
    runner = FakeRunner(tools={"blueutil"}, dry_run=True)
    sleeps: list[float] = []
    outcome = _selector(_context(runner, sleeps), []).run("smart")
    assert outcome.succeeded == "blueutil"
    assert sleeps == []


def test_unknown_mode_and_strategy_rejected() -> None:
    selector = _selector(_context(FakeRunner(), []), [])
    with pytest.raises(ConfigError, match="fallback mode"):
        selector.run("random")
    with pytest.raises(ConfigError, match="Unknown fallback strategy"):
        selector.run_named("reset-preferences")


def test_blueutil_failure_reports_the_failed_action() -> None:
    runner = FakeRunner(tools={"blueutil"}, handler=lambda cmd: None if cmd[1] == "--connect" else "")
    sleeps: list[float] = []
    outcome = _selector(_context(runner, sleeps), []).run_named("blueutil")

    assert outcome.succeeded is None
    assert outcome.results[0].detail == "connect 0C:E0:E4:86:0B:06 failed (execution-failed): failed"
    assert sleeps == [3.0]
