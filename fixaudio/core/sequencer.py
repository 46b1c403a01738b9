"""Disconnect/reconnect recovery state machine with bounded retries."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from fixaudio.core.actions import ActionExecutor
from fixaudio.core.config import PhaseTimings
from fixaudio.core.errors import FixAudioError, RecoveryCancelled, VerificationInconclusive
from fixaudio.core.model import (
    ConnectionState,
    DeviceIdentity,
    Phase,
    PhaseTransition,
    RecoveryAttempt,
    RecoveryRun,
)
from fixaudio.core.prober import DeviceStatusProber

LOGGER = logging.getLogger(__name__)

NOT_CONNECTED = "not connected"
CANCELLED = "cancelled"
LOW_QUALITY = "low-quality profile still active"

PhaseListener = Callable[[int, Phase], None]


class _AttemptRecorder:
    def __init__(self, number: int, clock: Callable[[], float], listener: PhaseListener | None) -> None:
        self.number = number
        self.clock = clock
        self.listener = listener
        self.transitions: list[PhaseTransition] = []
        self.last_state: ConnectionState | None = None
        self.enter(Phase.IDLE)

    def enter(self, phase: Phase) -> None:
        self.transitions.append(PhaseTransition(phase, self.clock()))
        if self.listener is not None:
            self.listener(self.number, phase)

    def succeed(self) -> RecoveryAttempt:
        self.enter(Phase.SUCCEEDED)
        return RecoveryAttempt(self.number, tuple(self.transitions), True, None, self.last_state)

    def fail(self, reason: str) -> RecoveryAttempt:
        self.enter(Phase.FAILED)
        return RecoveryAttempt(self.number, tuple(self.transitions), False, reason, self.last_state)


class RecoverySequencer:
    """Runs check → disconnect → wait → reconnect → wait → verify, up to N times.

    Delays come from ``timings`` and are slept through ``sleep`` (or waited on
    the ``cancel`` event when one is given) so tests can drive the whole
    machine without wall-clock waits. Failures inside a phase end the attempt,
    never the retry loop; only cancellation stops the loop early.
    """

    def __init__(
        self,
        prober: DeviceStatusProber,
        executor: ActionExecutor,
        timings: PhaseTimings | None = None,
        *,
        max_attempts: int = 3,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        cancel: threading.Event | None = None,
        on_transition: PhaseListener | None = None,
    ) -> None:
        self.prober = prober
        self.executor = executor
        self.timings = timings or PhaseTimings()
        self.max_attempts = max_attempts
        self.dry_run = dry_run
        self.sleep = sleep
        self.clock = clock
        self.cancel = cancel
        self.on_transition = on_transition

    def run(self, identity: DeviceIdentity) -> RecoveryRun:
        attempts: list[RecoveryAttempt] = []
        for number in range(1, self.max_attempts + 1):
            LOGGER.info("Attempt %d/%d", number, self.max_attempts)
            attempt = self.run_attempt(identity, number)
            attempts.append(attempt)
            if attempt.succeeded:
                break
            if attempt.reason == CANCELLED:
                return RecoveryRun(tuple(attempts), cancelled=True)
            if number < self.max_attempts:
                LOGGER.warning(
                    "Attempt %d failed (%s), retrying in %g seconds...",
                    number,
                    attempt.reason,
                    self.timings.retry_pause_s,
                )
                if not self._pause(self.timings.retry_pause_s):
                    return RecoveryRun(tuple(attempts), cancelled=True)
        return RecoveryRun(tuple(attempts))

    def run_attempt(self, identity: DeviceIdentity, number: int = 1) -> RecoveryAttempt:
        recorder = _AttemptRecorder(number, self.clock, self.on_transition)
        try:
            return self._sequence(identity, recorder)
        except RecoveryCancelled:
            LOGGER.warning("Recovery cancelled during attempt %d", number)
            return recorder.fail(CANCELLED)
        except VerificationInconclusive as exc:
            LOGGER.warning("Could not verify A2DP restoration: %s", exc)
            return recorder.fail(f"verification inconclusive: {exc}")
        except FixAudioError as exc:
            LOGGER.warning("Attempt %d failed: %s", number, exc)
            return recorder.fail(str(exc))

    def _sequence(self, identity: DeviceIdentity, rec: _AttemptRecorder) -> RecoveryAttempt:
        self._enter(rec, Phase.CHECKING)
        LOGGER.info("Checking device status...")
        rec.last_state = self.prober.probe(identity)
        if not rec.last_state.is_connected:
            LOGGER.warning("Device %s not currently connected (%s)", identity.address, rec.last_state.value)
            return rec.fail(NOT_CONNECTED)

        self._enter(rec, Phase.DISCONNECTING)
        result = self.executor.disconnect(identity.address)
        if not result.ok:
            return rec.fail(f"disconnect failed: {result.outcome.value}")

        self._wait(rec, Phase.WAITING_AFTER_DISCONNECT, "clean disconnection")

        self._enter(rec, Phase.RECONNECTING)
        result = self.executor.connect(identity.address)
        if not result.ok:
            return rec.fail(f"reconnect failed: {result.outcome.value}")

        self._wait(rec, Phase.WAITING_AFTER_RECONNECT, "profile establishment")

        self._enter(rec, Phase.VERIFYING)
        LOGGER.info("Verifying audio restoration...")
        rec.last_state = self.prober.probe(identity, want_profile=True)
        state = rec.last_state
        if self.dry_run:
            LOGGER.info("[DRY RUN] Verification is advisory; current state: %s", state.value)
            return rec.succeed()
        if state is ConnectionState.CONNECTED_HIGH_QUALITY:
            LOGGER.info("A2DP profile detected")
            return rec.succeed()
        if state is ConnectionState.CONNECTED:
            LOGGER.info("Device reconnected (profile status unclear)")
            return rec.succeed()
        if state is ConnectionState.CONNECTED_LOW_QUALITY:
            LOGGER.warning("Device reconnected but still in the call profile")
            return rec.fail(LOW_QUALITY)
        raise VerificationInconclusive(f"device state is {state.value} after reconnect")

    def _enter(self, rec: _AttemptRecorder, phase: Phase) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise RecoveryCancelled(f"cancelled before {phase.value}")
        rec.enter(phase)

    def _wait(self, rec: _AttemptRecorder, phase: Phase, purpose: str) -> None:
        self._enter(rec, phase)
        seconds = self.timings.wait_for(phase)
        LOGGER.info("Waiting %g seconds for %s...", seconds, purpose)
        if not self._pause(seconds):
            raise RecoveryCancelled(f"cancelled during {phase.value}")

    def _pause(self, seconds: float) -> bool:
        """Wait ``seconds``; return ``False`` if cancelled meanwhile."""
        if self.dry_run:
            LOGGER.info("[DRY RUN] Would wait %g seconds", seconds)
            return not (self.cancel is not None and self.cancel.is_set())
        if self.cancel is not None:
            return not self.cancel.wait(seconds)
        if seconds > 0:
            self.sleep(seconds)
        return True
