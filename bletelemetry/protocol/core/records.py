# bletelemetry/protocol/core/records.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Mapping, Optional, Type


@dataclass(frozen=True, kw_only=True)
class TelemetryRecord:
    """
    Base of every decoded telemetry record.

    kind      : record kind name from records.yml (snapshot key)
    timestamp : host wall-clock time (s) when the record was decoded
    """
    kind: str
    timestamp: float

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, kw_only=True)
class LiveData(TelemetryRecord):
    """Live measurement of a running (or idle) battery test."""
    voltage: float = 0.0
    current: float = 0.0
    target_current: float = 0.0
    capacity: float = 0.0
    test_status: str = "STOPPED"
    elapsed_time: int = 0
    internal_resistance: Optional[float] = None  # ohms

    @property
    def running(self) -> bool:
        return self.test_status == "RUNNING"


@dataclass(frozen=True, kw_only=True)
class StatusData(TelemetryRecord):
    """Current-monitor status snapshot."""
    current: float = 0.0
    voltage: float = 0.0
    power: float = 0.0
    peak_current: float = 0.0
    min_current: float = 0.0
    peak_voltage: float = 0.0
    min_voltage: float = 0.0
    uptime: int = 0
    energy: float = 0.0
    alarm: bool = False
    zero_offset: float = 0.0

    @property
    def average_power(self) -> float:
        # energy is reported in Wh, uptime in seconds
        if self.uptime <= 0:
            return 0.0
        return self.energy * 3600.0 / self.uptime


@dataclass(frozen=True, kw_only=True)
class TestConfig(TelemetryRecord):
    __test__ = False  # not a pytest class

    max_current: float = 0.0
    min_current: float = 0.0
    cutoff_voltage: float = 0.0
    current_step: float = 0.0


@dataclass(frozen=True, kw_only=True)
class TestResult(TelemetryRecord):
    """Final report emitted by the tester when a test ends."""
    __test__ = False

    final_capacity: float = 0.0  # mAh
    internal_resistance: Optional[float] = None  # ohms
    test_duration: int = 0  # seconds
    final_voltage: float = 0.0
    open_circuit_voltage: float = 0.0

    @property
    def average_current(self) -> float:
        """Mean discharge current in A."""
        if self.test_duration <= 0:
            return 0.0
        return (self.final_capacity / 1000.0) / (self.test_duration / 3600.0)

    @property
    def energy_delivered(self) -> float:
        """Approximate energy in Wh (capacity x mean of OCV and final voltage)."""
        mean_v = (self.open_circuit_voltage + self.final_voltage) / 2.0
        return (self.final_capacity / 1000.0) * mean_v


@dataclass(frozen=True, kw_only=True)
class PidData(TelemetryRecord):
    error: float = 0.0
    output: float = 0.0
    integral: float = 0.0
    p_term: Optional[float] = None
    i_term: Optional[float] = None
    d_term: Optional[float] = None


@dataclass(frozen=True, kw_only=True)
class AlarmData(TelemetryRecord):
    message: str = ""
    active: bool = True


@dataclass(frozen=True, kw_only=True)
class LifecycleMarker:
    """
    Free-text lifecycle line (e.g. "Test Started").

    If `target` names a record kind, `changes` are applied to the current
    snapshot of that kind (only if one exists).
    """
    name: str
    text: str
    target: Optional[str] = None
    changes: Mapping[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


@dataclass(frozen=True)
class Unrecognized:
    """Decoder verdict for a record that matches no known grammar."""
    record: str
    reason: str = "unknown_tag"


RECORD_TYPES: Dict[str, Type[TelemetryRecord]] = {
    "live": LiveData,
    "status": StatusData,
    "config": TestConfig,
    "result": TestResult,
    "pid": PidData,
    "alarm": AlarmData,
}


def record_field_names(cls: Type[TelemetryRecord]) -> set[str]:
    """Payload field names of a record class (excludes kind/timestamp)."""
    return {f.name for f in fields(cls)} - {"kind", "timestamp"}
