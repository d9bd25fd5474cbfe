# bletelemetry/app/runner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from bletelemetry.app.config import TelemetryConfig
from bletelemetry.app.controller import TelemetryController
from bletelemetry.app.session_index import set_device
from bletelemetry.app.sinks import HistorySink, RecordingSink
from bletelemetry.core.context import Context
from bletelemetry.core.recording.command import CommandTraceLogger
from bletelemetry.core.recording.records import RecordRecorder
from bletelemetry.core.session_identity import context_identity, device_fingerprint
from bletelemetry.core.session_store import SessionPaths, create_session_dir
from bletelemetry.runtime.state import ConnectionState
from bletelemetry.transport.base import Transport
from bletelemetry.transport.ble import BleakTransport


@dataclass(frozen=True)
class AppRun:
    controller: TelemetryController
    context: Context
    session: Optional[SessionPaths]
    cmd_sink: CommandTraceLogger
    history: HistorySink
    recorder: Optional[RecordRecorder]


def _track_device(session: SessionPaths, controller: TelemetryController) -> Callable[[], None]:
    """Write the connected device into session.json once per connection."""
    last: dict = {}

    def _on_state(state: ConnectionState) -> None:
        if not state.connected:
            return
        fp = device_fingerprint(state)
        if fp == last.get("device"):
            return
        last["device"] = fp
        set_device(session.session_json, device=fp)

    return controller.session.subscribe_state(_on_state)


def start_run(
    cfg: TelemetryConfig,
    *,
    sessions_base_dir: Optional[Path] = None,
    prefix: str = "session",
    context: Optional[Context] = None,
    transport: Optional[Transport] = None,
) -> AppRun:
    """
    Wire up one app run: context, transport, controller and sinks.

    With `sessions_base_dir`, a recording directory is created and records,
    commands and session.json go there. Without it nothing touches the disk.
    """
    log = logging.getLogger(__name__)

    context = context or Context.load(cfg.protocol_dir, cfg.variant)
    transport = transport or BleakTransport(connect_timeout_s=cfg.connect_timeout_s)

    session: Optional[SessionPaths] = None
    if sessions_base_dir is not None:
        session = create_session_dir(
            sessions_base_dir,
            identity=context_identity(context),
            device=device_fingerprint(ConnectionState()),
            prefix=prefix,
        )

    cmd_sink = CommandTraceLogger(
        logger=logging.getLogger("bletelemetry.commands"),
        file_path=session.commands_jsonl if session else None,
        flush_interval_s=0.5,
        context={"variant": context.variant},
    )

    controller = TelemetryController(
        cfg,
        context=context,
        transport=transport,
        cmd_sink=cmd_sink,
        logger=log,
    )

    history = HistorySink(cfg.history_size)
    controller.add_sink(history)

    recorder: Optional[RecordRecorder] = None
    if session is not None:
        recorder = RecordRecorder(session.records_dir, flush_interval_s=0.5)
        controller.add_sink(RecordingSink(recorder=recorder, session_json_path=session.session_json, logger=log))
        _track_device(session, controller)

    return AppRun(
        controller=controller,
        context=context,
        session=session,
        cmd_sink=cmd_sink,
        history=history,
        recorder=recorder,
    )
