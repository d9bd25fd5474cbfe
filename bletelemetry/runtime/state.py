# bletelemetry/runtime/state.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Tuple

from bletelemetry.protocol.core.records import (
    AlarmData,
    LiveData,
    PidData,
    StatusData,
    TelemetryRecord,
    TestConfig,
    TestResult,
)


class ConnectionStatus(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass(frozen=True)
class ConnectionState:
    """
    Runtime state of the radio link. Replaced, never mutated.
    """
    status: ConnectionStatus = ConnectionStatus.IDLE
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    last_update_time: Optional[float] = field(default=None, compare=False)

    @property
    def connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED


@dataclass(frozen=True)
class DiscoveredDevice:
    """
    A device seen during the current scan.
    """
    id: str
    name: str
    signal_strength: int = 0


class TelemetrySnapshot:
    """
    Latest record of each kind, safe to hand to observers (read-only).
    """

    __slots__ = ("_records",)

    def __init__(self, records: Optional[Mapping[str, TelemetryRecord]] = None):
        self._records = MappingProxyType(dict(records or {}))

    def with_record(self, record: TelemetryRecord) -> "TelemetrySnapshot":
        records = dict(self._records)
        # re-insert so iteration order is oldest update first
        records.pop(record.kind, None)
        records[record.kind] = record
        return TelemetrySnapshot(records)

    def get(self, kind: str) -> Optional[TelemetryRecord]:
        return self._records.get(kind)

    @property
    def records(self) -> Mapping[str, TelemetryRecord]:
        return self._records

    def kinds(self) -> Tuple[str, ...]:
        return tuple(self._records)

    @property
    def is_empty(self) -> bool:
        return not self._records

    # typed accessors for the stock record kinds
    def _first(self, cls: type) -> Any:
        for r in self._records.values():
            if isinstance(r, cls):
                return r
        return None

    @property
    def live(self) -> Optional[LiveData]:
        return self._first(LiveData)

    @property
    def status(self) -> Optional[StatusData]:
        return self._first(StatusData)

    @property
    def config(self) -> Optional[TestConfig]:
        return self._first(TestConfig)

    @property
    def result(self) -> Optional[TestResult]:
        return self._first(TestResult)

    @property
    def pid(self) -> Optional[PidData]:
        # PID and PID_DEBUG share a type; the newest one is the interesting one
        pids = [r for r in self._records.values() if isinstance(r, PidData)]
        return max(pids, key=lambda r: r.timestamp) if pids else None

    @property
    def alarm_active(self) -> bool:
        # the most recently received ALARM or STATUS record decides
        for r in reversed(self._records.values()):
            if isinstance(r, AlarmData):
                return r.active
            if isinstance(r, StatusData):
                return r.alarm
        return False

    def __iter__(self) -> Iterator[TelemetryRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TelemetrySnapshot):
            return NotImplemented
        return dict(self._records) == dict(other._records)

    def __repr__(self) -> str:
        return f"TelemetrySnapshot(kinds={list(self._records)})"


@dataclass(frozen=True)
class SessionStatus:
    """
    A snapshot of the full session status, safe to share with observers.
    """
    connection: ConnectionState
    telemetry: TelemetrySnapshot
    devices: Tuple[DiscoveredDevice, ...]
