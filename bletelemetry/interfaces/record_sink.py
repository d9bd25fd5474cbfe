from typing import Protocol

from bletelemetry.protocol.core.records import TelemetryRecord


class RecordSink(Protocol):
    def on_record(self, record: TelemetryRecord) -> None: ...
    def close(self) -> None: ...
