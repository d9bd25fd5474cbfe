# bletelemetry/transport/errors.py
from __future__ import annotations

class TransportError(Exception):
    """Base class for transport-layer failures."""

class TransportUnavailable(TransportError):
    """No usable radio (adapter missing, powered off, backend unsupported)."""

class TransportPermissionError(TransportError):
    pass

class TransportOpenError(TransportError):
    pass

class ServiceNotFound(TransportOpenError):
    pass

class CharacteristicNotFound(TransportOpenError):
    pass

class TransportIOError(TransportError):
    pass
