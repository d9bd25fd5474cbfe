# protocol/__init__.py

# Core classes
from .core import (
    Protocol, LineReassembler, MessageDecoder, CommandLine,
    TelemetryRecord, LifecycleMarker, Unrecognized,
)

__all__ = [
    "Protocol", "LineReassembler", "MessageDecoder", "CommandLine",
    "TelemetryRecord", "LifecycleMarker", "Unrecognized"]
