# bletelemetry/core/errors.py
from __future__ import annotations


class TelemetryError(Exception):
    """
    Base class for all expected operational errors of the telemetry engine.

    None of these are process-fatal: the session always returns to a stable
    state and the caller may retry by re-issuing scan/connect/send.
    """

    #: Stable machine-readable identifier (for CLI exit mapping, UI messages, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Configuration / setup errors (no radio access yet)
# ---------------------------------------------------------------------------

class ConfigError(TelemetryError):
    """
    Protocol tables or engine configuration are invalid.

    Examples:
      - variant directory missing
      - YAML file malformed or missing a root node
      - record type not registered
    """
    code = "config_error"


# ---------------------------------------------------------------------------
# Radio / connection lifecycle errors
# ---------------------------------------------------------------------------

class TransportUnavailableError(TelemetryError):
    """
    The platform cannot perform wireless operations at all.

    Examples:
      - no Bluetooth adapter
      - adapter powered off
      - BLE backend not supported on this OS
    """
    code = "transport_unavailable"


class PermissionDeniedError(TelemetryError):
    """The OS refused Bluetooth access to this process."""
    code = "permission_denied"


class ServiceNotFoundError(TelemetryError):
    """Device connected but does not expose the telemetry service."""
    code = "service_not_found"


class CharacteristicNotFoundError(TelemetryError):
    """Service found but the telemetry characteristic is missing."""
    code = "characteristic_not_found"


class ConnectionFailedError(TelemetryError):
    """
    Link could not be established or dropped while being established.

    Examples:
      - device out of range
      - connect timeout
      - notification subscription rejected
    """
    code = "connection_failed"


# ---------------------------------------------------------------------------
# Session / command errors
# ---------------------------------------------------------------------------

class NotConnectedError(TelemetryError):
    """A command was attempted outside the Connected state."""
    code = "not_connected"


class CommandSendError(TelemetryError):
    """The transport rejected a write while the link was up."""
    code = "send_failed"


class SessionStateError(TelemetryError):
    """An operation was requested from a state that does not allow it."""
    code = "invalid_state"


# ---------------------------------------------------------------------------
# Data errors
# ---------------------------------------------------------------------------

class MalformedRecordError(TelemetryError):
    """
    A record could not be classified or fully parsed.

    Always recovered locally by the decoder: logged, discarded, and the
    session continues with the next record.
    """
    code = "malformed_record"
