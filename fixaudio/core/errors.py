"""Domain-specific errors for fix-audio."""


class FixAudioError(Exception):
    """Base error for fix-audio."""


class InvalidAddressFormat(FixAudioError):
    """Raised when a hardware address does not contain exactly 12 hex digits."""


class ConfigError(FixAudioError):
    """Raised when the configuration file cannot be read or fails validation."""


class ToolUnavailable(FixAudioError):
    """Raised when no external tool is available for a required capability."""


class ActionFailed(FixAudioError):
    """Raised when a disconnect/connect command did not succeed."""


class ActionTimeout(ActionFailed):
    """Raised when a disconnect/connect command exceeded its timeout."""


class VerificationInconclusive(FixAudioError):
    """Raised when post-reconnect probing cannot confirm the device state."""


class RecoveryCancelled(FixAudioError):
    """Raised when the cancellation token is set between phases."""
