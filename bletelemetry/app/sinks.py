# bletelemetry/app/sinks.py
from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from threading import Lock
from typing import Deque, Dict, List, Optional

from bletelemetry.app.session_index import upsert_record_schema
from bletelemetry.core.recording.records import RecordRecorder
from bletelemetry.interfaces.record_sink import RecordSink
from bletelemetry.protocol.core.records import TelemetryRecord


class HistorySink(RecordSink):
    """
    Bounded per-kind history (chart window): the newest `size` records of
    every kind, oldest first.
    """

    def __init__(self, size: int = 50):
        if size <= 0:
            raise ValueError("History size must be positive")
        self.size = int(size)
        self._lock = Lock()
        self._history: Dict[str, Deque[TelemetryRecord]] = {}

    def on_record(self, record: TelemetryRecord) -> None:
        with self._lock:
            window = self._history.get(record.kind)
            if window is None:
                window = deque(maxlen=self.size)
                self._history[record.kind] = window
            window.append(record)

    def history(self, kind: str) -> List[TelemetryRecord]:
        with self._lock:
            return list(self._history.get(kind, ()))

    def series(self, kind: str, field_name: str) -> List[float]:
        """(value) series of one numeric field, for plotting."""
        return [getattr(r, field_name) for r in self.history(kind) if getattr(r, field_name, None) is not None]

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def close(self) -> None:
        self.clear()


class RecordingSink(RecordSink):
    """
    Records telemetry to CSV via RecordRecorder and keeps session.json's
    per-kind column schema up to date.
    """

    def __init__(
        self,
        *,
        recorder: RecordRecorder,
        session_json_path: Path,
        logger: Optional[logging.Logger] = None,
    ):
        self._recorder = recorder
        self._session_json_path = Path(session_json_path)
        self._log = logger or logging.getLogger(__name__)
        self._seen_kinds: set[str] = set()
        self._lock = Lock()

    def on_record(self, record: TelemetryRecord) -> None:
        # Always record
        self._recorder.on_record(record)

        with self._lock:
            first_time = record.kind not in self._seen_kinds
            if first_time:
                self._seen_kinds.add(record.kind)

        if not first_time:
            return

        schema = self._recorder.build_schema() or {}
        entry = (schema.get("files") or {}).get(record.kind)
        if entry is None:
            return
        try:
            upsert_record_schema(self._session_json_path, kind=record.kind, schema=entry)
        except OSError:
            self._log.exception("SESSION_MANIFEST_UPDATE_FAILED kind=%s", record.kind)

    def close(self) -> None:
        self._recorder.close()
