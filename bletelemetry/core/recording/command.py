# bletelemetry/core/recording/command.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from bletelemetry.interfaces.command_sink import CommandEvent, CommandSink
from bletelemetry.core.recording.async_writer import AsyncWriter


@dataclass
class CommandTraceLogger(CommandSink):
    """
    Command trace: one JSON object per line (commands.jsonl).

    Without a file_path, events only go to the logger at DEBUG level.
    `context` is merged into every line (e.g. device_id, variant).
    """
    logger: logging.Logger
    file_path: Optional[Path] = None
    flush_interval_s: float = 0.5
    context: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._writer: Optional[AsyncWriter] = None
        if self.file_path is not None:
            self._writer = AsyncWriter(
                path=self.file_path,
                write_func=self._write_batch,
                flush_interval=self.flush_interval_s,
                logger=self.logger,
            )

    def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    def flush(self) -> None:
        if self._writer is not None:
            self._writer.flush()

    def on_command(self, event: CommandEvent) -> None:
        self.logger.debug("CMD_TRACE name=%s kind=%s request_id=%s", event.name, event.kind, event.request_id)
        if self._writer is None:
            return

        out: Dict[str, Any] = dict(self.context)
        out.update(
            {
                "name": event.name,
                "kind": event.kind,
                "request_id": event.request_id,
                "payload": dict(event.payload) if event.payload is not None else None,
                "ts_utc": event.ts_utc or datetime.now(timezone.utc).isoformat(),
            }
        )
        out = {k: v for k, v in out.items() if v is not None}

        self._writer.write(json.dumps(out, ensure_ascii=False))

    @staticmethod
    def _write_batch(path: Path, batch: List[str]) -> None:
        with open(path, "a", encoding="utf-8") as f:
            for line in batch:
                f.write(line + "\n")
