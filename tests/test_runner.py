from __future__ import annotations

import shutil
import subprocess

import pytest

from fixaudio.core.model import ActionOutcome
from fixaudio.core.runner import CommandRunner


def _cp(cmd: list[str], rc: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


def test_missing_tool_is_classified(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = CommandRunner().run(["BluetoothConnector", "--status", "0C:E0:E4:86:0B:06"])
    assert result.outcome is ActionOutcome.TOOL_MISSING
    assert not result.ok


def test_timeout_is_classified(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, float] = {}

    def fake_run(cmd, **kwargs):
        seen["timeout"] = kwargs["timeout"]
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = CommandRunner(timeout_s=4.0).run(["BluetoothConnector", "--connect", "X"])
    assert result.outcome is ActionOutcome.TIMEOUT
    assert seen["timeout"] == 4.0
    assert "timed out" in result.output


def test_nonzero_exit_is_execution_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kwargs: _cp(cmd, 1, stderr="device busy"))

    result = CommandRunner().run(["BluetoothConnector", "--disconnect", "X"])
    assert result.outcome is ActionOutcome.EXECUTION_FAILED
    assert result.returncode == 1
    assert result.output == "device busy"


def test_success_keeps_output(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kwargs: _cp(cmd, 0, stdout="Connected\n"))

    result = CommandRunner().run(["BluetoothConnector", "--status", "X"])
    assert result.ok
    assert result.stdout == "Connected\n"
    assert result.output == "Connected"


def test_dry_run_skips_mutating_commands(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, **kwargs):
        raise AssertionError(f"Unexpected cmd: {cmd}")

    monkeypatch.setattr(subprocess, "run", fake_run)
    monkeypatch.setattr(shutil, "which", lambda name: f"/usr/local/bin/{name}")

    runner = CommandRunner(dry_run=True)
    result = runner.run(["BluetoothConnector", "--disconnect", "X"], mutates=True)
    assert result.ok
    assert result.dry_run
    assert runner.skipped == [("BluetoothConnector", "--disconnect", "X")]


def test_dry_run_still_reports_missing_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(shutil, "which", lambda name: None)

    result = CommandRunner(dry_run=True).run(["blueutil", "--connect", "X"], mutates=True)
    assert result.outcome is ActionOutcome.TOOL_MISSING


def test_dry_run_still_runs_read_only_queries(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kwargs: _cp(cmd, 0, stdout="Connected"))

    result = CommandRunner(dry_run=True).run(["BluetoothConnector", "--status", "X"])
    assert result.ok
    assert not result.dry_run


def test_undecodable_output_is_replaced_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    raw = b"Bluetooth:\n  \xff\xfe Address: 0C:E0:E4:86:0B:06\n"

    def fake_run(cmd, **kwargs):
        stdout = raw.decode(kwargs.get("encoding") or "utf-8", kwargs.get("errors") or "strict")
        return _cp(cmd, 0, stdout=stdout)

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = CommandRunner().run(["system_profiler", "SPBluetoothDataType"])
    assert result.ok
    assert "�" in result.stdout
    assert "0C:E0:E4:86:0B:06" in result.stdout


def test_other_os_errors_are_execution_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, **kwargs):
        raise OSError(8, "Exec format error")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = CommandRunner().run(["system_profiler", "SPBluetoothDataType"])
    assert result.outcome is ActionOutcome.EXECUTION_FAILED
    assert "Exec format error" in result.output
