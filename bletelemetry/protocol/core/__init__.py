# protocol/core/__init__.py

from .defs import Protocol, RecordDef, FieldDef, MarkerDef
from .parser import LineReassembler
from .decoder import MessageDecoder
from .command import CommandLine
from .records import (
    TelemetryRecord, LiveData, StatusData, TestConfig, TestResult, PidData, AlarmData,
    LifecycleMarker, Unrecognized, RECORD_TYPES,
)

__all__ = [
    "Protocol", "RecordDef", "FieldDef", "MarkerDef",
    "LineReassembler", "MessageDecoder", "CommandLine",
    "TelemetryRecord", "LiveData", "StatusData", "TestConfig", "TestResult",
    "PidData", "AlarmData", "LifecycleMarker", "Unrecognized", "RECORD_TYPES",
]
