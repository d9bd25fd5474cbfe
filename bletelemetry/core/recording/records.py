# bletelemetry/core/recording/records.py
from __future__ import annotations

import csv
from dataclasses import fields
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple

from bletelemetry.core.recording.async_writer import AsyncWriter
from bletelemetry.protocol.core.records import TelemetryRecord


def _utc_compact_ts() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


class RecordRecorder:
    """
    Records decoded telemetry to per-kind CSV files.

    Policy:
      - One CSV per record kind per run (created when the first record arrives)
      - Files live under: base_dir/<kind>_<start_ts>.csv
      - Columns: timestamp_utc, unix_time, then the record's own fields
    """

    META_FIELDS = ("timestamp_utc", "unix_time")

    def __init__(self, base_dir: Path, *, flush_interval_s: float = 0.5):
        self._lock = RLock()
        self._base_dir = Path(base_dir)
        self._flush_interval_s = float(flush_interval_s)

        self._writers: Dict[str, AsyncWriter] = {}
        self._fieldnames: Dict[str, List[str]] = {}
        self._run_ts = _utc_compact_ts()
        self._active = True

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def close(self) -> None:
        with self._lock:
            self._active = False
            writers = list(self._writers.values())
            self._writers.clear()
            self._fieldnames.clear()

        for w in writers:
            w.close()

    def flush(self) -> None:
        with self._lock:
            writers = list(self._writers.values())
        for w in writers:
            w.flush()

    def on_record(self, record: TelemetryRecord) -> None:
        kind = record.kind

        with self._lock:
            if not self._active:
                return

            writer = self._writers.get(kind)
            if writer is None:
                writer = AsyncWriter(
                    path=self.path_for(kind),
                    write_func=self._write_batch,
                    flush_interval=self._flush_interval_s,
                )
                self._writers[kind] = writer
                self._fieldnames[kind] = self._build_fieldnames(record)
            fieldnames = self._fieldnames[kind]

        writer.write((fieldnames, self._build_row(record)))

    def path_for(self, kind: str) -> Path:
        return self._base_dir / f"{kind}_{self._run_ts}.csv"

    def paths(self) -> Dict[str, Path]:
        with self._lock:
            return {kind: w.path for kind, w in self._writers.items()}

    @classmethod
    def _build_fieldnames(cls, record: TelemetryRecord) -> List[str]:
        names = [f.name for f in fields(record) if f.name not in ("kind", "timestamp")]
        return [*cls.META_FIELDS, *names]

    @staticmethod
    def _build_row(record: TelemetryRecord) -> Dict[str, Any]:
        row = record.as_dict()
        row.pop("kind", None)
        ts = row.pop("timestamp")
        row["timestamp_utc"] = datetime.fromtimestamp(ts, timezone.utc).isoformat()
        row["unix_time"] = ts
        return row

    @staticmethod
    def _write_batch(path: Path, batch: List[Tuple[List[str], Dict[str, Any]]]) -> None:
        if not batch:
            return

        new_file = not path.exists()
        fieldnames = batch[0][0]

        with open(path, "a", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            if new_file:
                w.writeheader()
            for _, row in batch:
                w.writerow(row)

    def build_schema(self) -> Optional[Dict[str, Any]]:
        """Column layout per kind, for session.json."""
        with self._lock:
            if not self._fieldnames:
                return None
            return {
                "run_started_at_utc": self._run_ts,
                "files": {
                    kind: {"file": self.path_for(kind).name, "columns": list(cols)}
                    for kind, cols in sorted(self._fieldnames.items())
                },
            }
