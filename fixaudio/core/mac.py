"""Hardware address normalization.

External Bluetooth tools disagree about which textual form of an address they
accept, so every address is reduced to one canonical form and, when a tool has
to be probed, expanded into a fixed list of variants.
"""

from __future__ import annotations

import re

from fixaudio.core.errors import InvalidAddressFormat

_HEX_DIGITS_RE = re.compile(r"^[0-9A-Fa-f]{12}$")
_SEPARATED_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-])(?:[0-9A-Fa-f]{2}\1){4}[0-9A-Fa-f]{2}$")
CANONICAL_RE = re.compile(r"^[0-9A-F]{2}(?::[0-9A-F]{2}){5}$")


def _hex_digits(address: str) -> str:
    if not isinstance(address, str):
        raise InvalidAddressFormat(f"Address must be a string, got {type(address).__name__}")
    stripped = address.strip()
    if _SEPARATED_RE.match(stripped):
        return re.sub(r"[:-]", "", stripped)
    if _HEX_DIGITS_RE.match(stripped):
        return stripped
    raise InvalidAddressFormat(
        f"Invalid MAC address format: '{address}'. "
        "Expected 12 hex digits, e.g. XX:XX:XX:XX:XX:XX or XX-XX-XX-XX-XX-XX"
    )


def _octets(digits: str) -> list[str]:
    return [digits[i : i + 2] for i in range(0, 12, 2)]


def normalize_mac(address: str) -> str:
    """Return the canonical colon-separated uppercase form of ``address``."""
    return ":".join(_octets(_hex_digits(address).upper()))


def mac_variants(address: str) -> tuple[str, ...]:
    """Return the six textual forms of ``address`` in a fixed order.

    Order: colon-upper, colon-lower, dash-upper, dash-lower, bare-upper,
    bare-lower. The first entry is always the canonical form.
    """
    digits = _hex_digits(address)
    variants: list[str] = []
    for separator in (":", "-", ""):
        for case in (str.upper, str.lower):
            variants.append(separator.join(_octets(case(digits))))
    return tuple(variants)


def is_valid_mac(address: str) -> bool:
    try:
        _hex_digits(address)
    except InvalidAddressFormat:
        return False
    return True


class AddressFormats:
    """Remembers which address variant the control tool accepted.

    Populated once per run by the first successful status query so later
    queries and actions reuse the working form instead of searching again.
    """

    def __init__(self) -> None:
        self._working: dict[str, str] = {}

    def remember(self, address: str, variant: str) -> None:
        self._working[normalize_mac(address)] = variant

    def known(self, address: str) -> str | None:
        return self._working.get(normalize_mac(address))

    def preferred(self, address: str) -> str:
        canonical = normalize_mac(address)
        return self._working.get(canonical, canonical)

    def candidates(self, address: str) -> tuple[str, ...]:
        known = self.known(address)
        if known is not None:
            return (known,)
        return mac_variants(address)
