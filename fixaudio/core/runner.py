"""Subprocess wrapper that classifies external command outcomes."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence

from fixaudio.core.model import ActionOutcome, CommandResult

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0


class CommandRunner:
    """Runs one external command at a time with a timeout.

    Mutating commands are not executed in dry-run mode; the runner still
    checks that the executable exists so dry runs report missing tools the
    same way real runs do.
    """

    def __init__(self, *, dry_run: bool = False, timeout_s: float = DEFAULT_TIMEOUT_S) -> None:
        self.dry_run = dry_run
        self.timeout_s = timeout_s
        self.skipped: list[tuple[str, ...]] = []

    def available(self, executable: str) -> bool:
        return shutil.which(executable) is not None

    def is_privileged(self) -> bool:
        geteuid = getattr(os, "geteuid", None)
        return geteuid is not None and geteuid() == 0

    def run(
        self,
        argv: Sequence[str],
        *,
        mutates: bool = False,
        timeout_s: float | None = None,
    ) -> CommandResult:
        cmd = tuple(argv)
        if mutates and self.dry_run:
            if not self.available(cmd[0]):
                return CommandResult(cmd, ActionOutcome.TOOL_MISSING, stderr=f"{cmd[0]}: not found", dry_run=True)
            LOGGER.info("[DRY RUN] Would execute: %s", " ".join(cmd))
            self.skipped.append(cmd)
            return CommandResult(cmd, ActionOutcome.SUCCESS, returncode=0, dry_run=True)

        timeout = self.timeout_s if timeout_s is None else timeout_s
        LOGGER.debug("Executing: %s", " ".join(cmd))
        try:
            completed = subprocess.run(
                list(cmd),
                check=False,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
            )
        except FileNotFoundError:
            LOGGER.debug("%s not found on PATH", cmd[0])
            return CommandResult(cmd, ActionOutcome.TOOL_MISSING, stderr=f"{cmd[0]}: not found")
        except subprocess.TimeoutExpired as exc:
            LOGGER.debug("%s timed out after %.1fs", " ".join(cmd), timeout)
            return CommandResult(
                cmd,
                ActionOutcome.TIMEOUT,
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr) or f"timed out after {timeout:g}s",
            )
        except OSError as exc:
            LOGGER.debug("%s could not be executed: %s", cmd[0], exc)
            return CommandResult(cmd, ActionOutcome.EXECUTION_FAILED, stderr=str(exc))

        outcome = ActionOutcome.SUCCESS if completed.returncode == 0 else ActionOutcome.EXECUTION_FAILED
        result = CommandResult(
            cmd,
            outcome,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        LOGGER.debug("%s -> rc=%s output=%r", cmd[0], completed.returncode, result.output)
        return result


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data
