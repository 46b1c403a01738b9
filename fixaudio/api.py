"""Stable public API for building tooling on top of fix-audio.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from fixaudio.core.config import PhaseTimings, RecoveryConfig, load_config
from fixaudio.core.errors import (
    ActionFailed,
    ActionTimeout,
    ConfigError,
    FixAudioError,
    InvalidAddressFormat,
    RecoveryCancelled,
    ToolUnavailable,
    VerificationInconclusive,
)
from fixaudio.core.mac import mac_variants, normalize_mac
from fixaudio.core.model import (
    ConnectionState,
    DeviceIdentity,
    DiscoveredDevice,
    FallbackOutcome,
    FallbackResult,
    Phase,
    ProbeResult,
    RecoveryAttempt,
    RecoveryReport,
    StatusReport,
)
from fixaudio.core.runner import CommandRunner
from fixaudio.core.service import RecoveryService

__all__ = [
    "FixAudioError",
    "InvalidAddressFormat",
    "ConfigError",
    "ToolUnavailable",
    "ActionFailed",
    "ActionTimeout",
    "VerificationInconclusive",
    "RecoveryCancelled",
    "ConnectionState",
    "DeviceIdentity",
    "DiscoveredDevice",
    "FallbackOutcome",
    "FallbackResult",
    "Phase",
    "ProbeResult",
    "RecoveryAttempt",
    "RecoveryReport",
    "StatusReport",
    "PhaseTimings",
    "RecoveryConfig",
    "load_config",
    "normalize_mac",
    "mac_variants",
    "FallbackStrategyInfo",
    "Client",
]


@dataclass(frozen=True)
class FallbackStrategyInfo:
    """A fallback strategy and whether its precondition currently holds."""

    name: str
    description: str
    available: bool


class Client:
    """Public client for the recovery orchestrator.

    A `Client` wraps configuration, status probing, discovery, the recovery
    sequence and fallback strategies behind a stable API intended for
    third-party tools (menu bar apps, hotkey daemons, scripts).
    """

    def __init__(
        self,
        config: RecoveryConfig | None = None,
        *,
        runner_factory: Callable[..., CommandRunner] = CommandRunner,
        **service_options: Any,
    ) -> None:
        self._service = RecoveryService(config, runner_factory=runner_factory, **service_options)

    @property
    def config(self) -> RecoveryConfig:
        return self._service.config

    def run_recovery(self, **overrides: Any) -> RecoveryReport:
        return self._service.run_recovery(**overrides)

    def probe_status(self, address: str | None = None) -> StatusReport:
        return self._service.probe_status(address)

    def discover_devices(self) -> list[DiscoveredDevice]:
        return self._service.discover_devices()

    def find_devices(self, hints: Sequence[str] | None = None) -> list[DiscoveredDevice]:
        return self._service.find_devices(hints)

    def list_fallbacks(self) -> list[FallbackStrategyInfo]:
        return [
            FallbackStrategyInfo(name=name, description=description, available=available)
            for name, description, available in self._service.fallback_strategies()
        ]

    def run_fallback(self, name: str, *, dry_run: bool = False) -> FallbackOutcome:
        return self._service.run_fallback(name, dry_run=dry_run)
