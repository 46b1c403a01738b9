"""Core data models used across prober, sequencer, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from fixaudio.core.errors import ActionFailed, ActionTimeout
from fixaudio.core.mac import mac_variants, normalize_mac


class ConnectionState(str, Enum):
    UNKNOWN = "unknown"
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    CONNECTED_HIGH_QUALITY = "connected-high-quality"
    CONNECTED_LOW_QUALITY = "connected-low-quality"

    @property
    def is_connected(self) -> bool:
        return self in _CONNECTED_STATES

    @property
    def has_profile(self) -> bool:
        return self in (
            ConnectionState.CONNECTED_HIGH_QUALITY,
            ConnectionState.CONNECTED_LOW_QUALITY,
        )


_CONNECTED_STATES = frozenset(
    {
        ConnectionState.CONNECTED,
        ConnectionState.CONNECTED_HIGH_QUALITY,
        ConnectionState.CONNECTED_LOW_QUALITY,
    }
)


class ActionOutcome(str, Enum):
    SUCCESS = "success"
    TOOL_MISSING = "tool-missing"
    EXECUTION_FAILED = "execution-failed"
    TIMEOUT = "timeout"


class Phase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    DISCONNECTING = "disconnecting"
    WAITING_AFTER_DISCONNECT = "waiting-after-disconnect"
    RECONNECTING = "reconnecting"
    WAITING_AFTER_RECONNECT = "waiting-after-reconnect"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class DeviceIdentity:
    address: str
    name: str
    name_hints: tuple[str, ...] = ()
    auto_detected: bool = False

    @classmethod
    def from_address(
        cls,
        address: str,
        name: str,
        name_hints: tuple[str, ...] = (),
        *,
        auto_detected: bool = False,
    ) -> DeviceIdentity:
        return cls(
            address=normalize_mac(address),
            name=name,
            name_hints=tuple(name_hints),
            auto_detected=auto_detected,
        )

    @property
    def variants(self) -> tuple[str, ...]:
        return mac_variants(self.address)


@dataclass(frozen=True)
class CommandResult:
    argv: tuple[str, ...]
    outcome: ActionOutcome
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is ActionOutcome.SUCCESS

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


@dataclass(frozen=True)
class ActionResult:
    action: str
    address: str
    outcome: ActionOutcome
    diagnostic: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is ActionOutcome.SUCCESS

    def raise_for_outcome(self) -> None:
        if self.outcome is ActionOutcome.TIMEOUT:
            raise ActionTimeout(f"{self.action} {self.address} timed out: {self.diagnostic}")
        if not self.ok:
            raise ActionFailed(
                f"{self.action} {self.address} failed ({self.outcome.value}): {self.diagnostic}"
            )


@dataclass(frozen=True)
class ProbeResult:
    source: str
    raw: str
    state: ConnectionState | None
    confidence: float = 0.0

    @property
    def conclusive(self) -> bool:
        return self.state is not None


@dataclass(frozen=True)
class StatusReport:
    identity: DeviceIdentity
    state: ConnectionState
    results: tuple[ProbeResult, ...]


@dataclass(frozen=True)
class DiscoveredDevice:
    address: str
    name: str
    connected: bool | None
    source: str


@dataclass(frozen=True)
class PhaseTransition:
    phase: Phase
    at: float


@dataclass(frozen=True)
class RecoveryAttempt:
    number: int
    transitions: tuple[PhaseTransition, ...]
    succeeded: bool
    reason: str | None = None
    final_state: ConnectionState | None = None

    @property
    def phases(self) -> tuple[Phase, ...]:
        return tuple(t.phase for t in self.transitions)


@dataclass(frozen=True)
class RecoveryRun:
    attempts: tuple[RecoveryAttempt, ...]
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return any(a.succeeded for a in self.attempts)

    @property
    def last_reason(self) -> str | None:
        return self.attempts[-1].reason if self.attempts else None


@dataclass(frozen=True)
class FallbackResult:
    strategy: str
    success: bool
    detail: str = ""


@dataclass(frozen=True)
class FallbackOutcome:
    mode: str
    results: tuple[FallbackResult, ...]

    @property
    def attempted(self) -> tuple[str, ...]:
        return tuple(r.strategy for r in self.results)

    @property
    def succeeded(self) -> str | None:
        for result in self.results:
            if result.success:
                return result.strategy
        return None


@dataclass(frozen=True)
class RecoveryReport:
    identity: DeviceIdentity
    success: bool
    attempts_used: int
    method_used: str | None
    reason: str | None
    attempts: tuple[RecoveryAttempt, ...]
    fallback: FallbackOutcome | None = None
    guidance: tuple[str, ...] = ()
    diagnostics: tuple[str, ...] = field(default_factory=tuple)
    dry_run: bool = False
