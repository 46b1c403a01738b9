"""Configuration loading and validation for fix-audio."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from fixaudio.core.actions import get_control_tool
from fixaudio.core.errors import ConfigError, InvalidAddressFormat
from fixaudio.core.model import DeviceIdentity, Phase

LOGGER = logging.getLogger(__name__)

DEFAULT_ADDRESS = "0C:E0:E4:86:0B:06"
DEFAULT_NAME = "PLT_BBTPRO"
DEFAULT_NAME_HINTS = ("PLT_", "Plantronics", "BackBeat", "BBTPRO")
DEFAULT_PROBE_SOURCES = ("control", "system_profiler", "audio_devices", "bluetoothctl")
FALLBACK_MODES = ("smart", "exhaustive")
CONFIG_ENV = "FIX_AUDIO_CONFIG"


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class PhaseTimings:
    """Durations, in seconds, consulted by the sequencer and fallbacks."""

    disconnect_wait_s: float = 3.0
    verify_wait_s: float = 2.0
    retry_pause_s: float = 2.0
    command_timeout_s: float = 10.0
    fallback_pause_s: float = 1.0
    cycle_pause_s: float = 2.0

    def wait_for(self, phase: Phase) -> float:
        if phase is Phase.WAITING_AFTER_DISCONNECT:
            return self.disconnect_wait_s
        if phase is Phase.WAITING_AFTER_RECONNECT:
            return self.verify_wait_s
        return 0.0


_TIMING_KEYS = frozenset(f.name for f in fields(PhaseTimings))


@dataclass(frozen=True)
class RecoveryConfig:
    address: str = DEFAULT_ADDRESS
    name: str = DEFAULT_NAME
    name_hints: tuple[str, ...] = DEFAULT_NAME_HINTS
    timings: PhaseTimings = field(default_factory=PhaseTimings)
    max_attempts: int = 3
    fallbacks_enabled: bool = True
    fallback_mode: str = "smart"
    control_tool: str = "bluetoothconnector"
    probe_sources: tuple[str, ...] = DEFAULT_PROBE_SOURCES
    auto_select: bool = False
    dry_run: bool = False

    def identity(self) -> DeviceIdentity:
        return DeviceIdentity.from_address(self.address, self.name, self.name_hints)

    def with_overrides(self, **overrides: Any) -> RecoveryConfig:
        """Return a copy with non-``None`` overrides applied.

        Timing keys (``disconnect_wait_s`` and friends) may be passed flat.
        """
        timing_changes = {k: v for k, v in overrides.items() if k in _TIMING_KEYS and v is not None}
        changes = {k: v for k, v in overrides.items() if k not in _TIMING_KEYS and v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown configuration option(s): {', '.join(sorted(unknown))}")
        if "name_hints" in changes:
            changes["name_hints"] = tuple(changes["name_hints"])
        if "probe_sources" in changes:
            changes["probe_sources"] = tuple(changes["probe_sources"])
        if timing_changes:
            changes["timings"] = replace(changes.get("timings", self.timings), **timing_changes)
        updated = replace(self, **changes)
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.fallback_mode not in FALLBACK_MODES:
            raise ConfigError(
                f"Unknown fallback mode '{self.fallback_mode}'. Available: {', '.join(FALLBACK_MODES)}"
            )
        for name in _TIMING_KEYS:
            if getattr(self.timings, name) < 0:
                raise ConfigError(f"{name} must not be negative")
        if self.timings.command_timeout_s <= 0:
            raise ConfigError("command_timeout_s must be greater than zero")
        unknown_sources = set(self.probe_sources) - set(DEFAULT_PROBE_SOURCES)
        if unknown_sources:
            raise ConfigError(f"Unknown probe source(s): {', '.join(sorted(unknown_sources))}")
        get_control_tool(self.control_tool)
        self.identity()


def _load_schema_validator() -> Any:
    schema_text = resources.files("fixaudio.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "fix-audio/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    raise ConfigError(f"{context} must be boolean true/false")


def _build_config(doc: dict[str, Any], source: Path) -> RecoveryConfig:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    overrides: dict[str, Any] = {}
    device = doc.get("device", {})
    if "address" in device:
        overrides["address"] = device["address"]
    if "name" in device:
        overrides["name"] = device["name"]
    if "name_hints" in device:
        overrides["name_hints"] = tuple(device["name_hints"])

    for key, value in doc.get("timing", {}).items():
        overrides[key] = float(value)

    if "max_attempts" in doc:
        overrides["max_attempts"] = int(doc["max_attempts"])

    fallbacks = doc.get("fallbacks", {})
    if "enabled" in fallbacks:
        overrides["fallbacks_enabled"] = _normalize_bool(fallbacks["enabled"], context="fallbacks.enabled")
    if "mode" in fallbacks:
        overrides["fallback_mode"] = fallbacks["mode"]

    if "control_tool" in doc:
        overrides["control_tool"] = doc["control_tool"]
    if "probe_sources" in doc:
        overrides["probe_sources"] = tuple(doc["probe_sources"])
    if "auto_select" in doc:
        overrides["auto_select"] = _normalize_bool(doc["auto_select"], context="auto_select")

    try:
        return RecoveryConfig().with_overrides(**overrides)
    except (ConfigError, InvalidAddressFormat) as exc:
        raise ConfigError(f"Invalid configuration in {source}: {exc}") from exc


def load_config(path: Path | str | None = None) -> RecoveryConfig:
    """Load configuration from ``path``, ``$FIX_AUDIO_CONFIG``, or the XDG default.

    An explicitly named file must exist; a missing default file yields the
    built-in defaults.
    """
    explicit = path if path is not None else os.environ.get(CONFIG_ENV)
    if explicit:
        config_path = Path(explicit).expanduser()
        if not config_path.is_file():
            raise ConfigError(f"Config file {config_path} does not exist")
    else:
        config_path = default_config_path()
        if not config_path.is_file():
            LOGGER.debug("No config file at %s, using defaults", config_path)
            return RecoveryConfig()

    LOGGER.debug("Loading config from %s", config_path)
    return _build_config(_read_yaml(config_path), config_path)
