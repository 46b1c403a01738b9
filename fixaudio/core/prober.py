"""Device status probing across independent sources."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from fixaudio.core.model import ConnectionState, DeviceIdentity, ProbeResult, StatusReport
from fixaudio.core.sources import ProbeSource

LOGGER = logging.getLogger(__name__)


class DeviceStatusProber:
    """Answers "is the device connected, and in which profile?".

    Sources are consulted in order. A positive judgment from any source is
    trusted immediately; only when every source so far is inconclusive does
    the prober keep going. Unavailable tools contribute nothing and never
    raise.
    """

    def __init__(self, sources: Sequence[ProbeSource]) -> None:
        self.sources = tuple(sources)

    def probe(self, identity: DeviceIdentity, *, want_profile: bool = False) -> ConnectionState:
        return self.report(identity, want_profile=want_profile).state

    def report(self, identity: DeviceIdentity, *, want_profile: bool = False) -> StatusReport:
        results: list[ProbeResult] = []
        best_connected: ConnectionState | None = None
        saw_disconnected = False

        for source in self.sources:
            result = source.probe(identity)
            results.append(result)
            LOGGER.debug(
                "Source %s -> %s",
                result.source,
                result.state.value if result.state else "no judgment",
            )
            state = result.state
            if state is None:
                continue
            if state is ConnectionState.DISCONNECTED:
                saw_disconnected = True
                continue
            if not state.is_connected:
                continue
            if state.has_profile or not want_profile:
                return StatusReport(identity, state, tuple(results))
            if best_connected is None:
                best_connected = state

        if best_connected is not None:
            final = best_connected
        elif saw_disconnected:
            final = ConnectionState.DISCONNECTED
        else:
            final = ConnectionState.UNKNOWN
        return StatusReport(identity, final, tuple(results))
