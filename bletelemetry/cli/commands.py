# bletelemetry/cli/commands.py
from __future__ import annotations

import argparse
import asyncio
import logging
import time
from pathlib import Path
from typing import Optional, Tuple

from bletelemetry.app.config import TelemetryConfig
from bletelemetry.app.runner import AppRun, start_run
from bletelemetry.app.session_index import recorded_kinds
from bletelemetry.app.variant_index import VariantIndex
from bletelemetry.core.errors import ConnectionFailedError
from bletelemetry.interfaces.record_sink import RecordSink
from bletelemetry.protocol.core.records import TelemetryRecord
from bletelemetry.runtime.state import ConnectionStatus, DiscoveredDevice, SessionStatus

from bletelemetry.cli.args import SESSIONS_BASE_DIR


# ---------------- Record sink ----------------

class PrintRecordSink(RecordSink):
    """Print decoded records to stdout."""

    def on_record(self, record: TelemetryRecord) -> None:
        d = record.as_dict()
        d.pop("kind", None)
        d.pop("timestamp", None)
        body = " ".join(f"{k}={v}" for k, v in d.items() if v is not None)
        print(f"{record.kind.upper():<10} {body}")

    def close(self) -> None:
        return None


# ---------------- Logging ----------------

def configure_console_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    # bleak is chatty at DEBUG
    logging.getLogger("bleak").setLevel(max(level, logging.INFO))


def configure_file_logging(app_log_path: Path) -> None:
    """
    Add a file handler to the root logger (idempotent).
    Kept in CLI (presentation-layer concern).
    """
    root = logging.getLogger()
    app_log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(app_log_path.resolve())

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target:
            return

    fh = logging.FileHandler(app_log_path, encoding="utf-8", delay=True)
    fh.setLevel(logging.INFO)
    fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(fh)

    if root.level > logging.INFO:
        root.setLevel(logging.INFO)


# ---------------- Status printing ----------------

def print_devices(devices: Tuple[DiscoveredDevice, ...]) -> None:
    if not devices:
        print("Devices:   (none)")
        return
    print("Devices:")
    for d in sorted(devices, key=lambda d: d.signal_strength, reverse=True):
        print(f"  - id={d.id} name={d.name} rssi={d.signal_strength}")


def print_status(st: SessionStatus) -> None:
    c = st.connection
    print(f"Link:      {c.status.value} device={c.device_id or '-'} name={c.device_name or '-'}")
    snap = st.telemetry
    if snap.is_empty:
        print("Telemetry: (none)")
        return
    print("Telemetry:")
    for record in snap:
        print(f"  - {record.kind}: {record.as_dict()}")
    if snap.alarm_active:
        print("ALARM ACTIVE")


# ---------------- Commands ----------------

def cmd_variants(*, protocol_dir: str) -> int:
    vindex = VariantIndex.load(protocol_dir)
    variants = vindex.list()
    if not variants:
        print(f"No protocol variants under {protocol_dir}")
        return 1

    print("Available protocol variants:\n")
    for v in variants:
        print(f"{v.name} (device={v.device_name!r}, protocol_version={v.protocol_version})")
        print(f"  records:  {', '.join(v.record_kinds)}")
        print(f"  commands: {', '.join(v.commands)}")
        print()
    return 0


def _config(args: argparse.Namespace) -> TelemetryConfig:
    return TelemetryConfig(
        protocol_dir=args.protocol_dir,
        variant=args.variant,
        scan_timeout_s=args.scan_secs,
        settle_delay_s=getattr(args, "settle_secs", 1.0),
    )


async def _scan(run: AppRun) -> Tuple[DiscoveredDevice, ...]:
    controller = run.controller
    await controller.scan()
    while controller.state.status is ConnectionStatus.SCANNING:
        await asyncio.sleep(0.1)
    return controller.devices


async def _connect(run: AppRun, device_id: Optional[str]) -> None:
    if device_id is None:
        print(f"Scanning for {run.context.protocol.device_name_prefix or 'devices'}...")
        devices = await _scan(run)
        if not devices:
            raise ConnectionFailedError(
                "No matching device found.",
                hint="Check the instrument is powered and advertising, or pass --device.",
            )
        best = max(devices, key=lambda d: d.signal_strength)
        device_id = best.id
        print(f"Using {best.name} ({best.id})")

    await run.controller.connect(device_id)
    print(f"Connected: {device_id}")


async def _cmd_scan(args: argparse.Namespace) -> int:
    run = start_run(_config(args))
    try:
        async with run.controller:
            print(f"Scanning {args.scan_secs:.0f}s...")
            print_devices(await _scan(run))
        return 0
    finally:
        _close_run(run)


def cmd_scan(args: argparse.Namespace) -> int:
    return asyncio.run(_cmd_scan(args))


async def _cmd_monitor(args: argparse.Namespace) -> int:
    run = start_run(_config(args), sessions_base_dir=SESSIONS_BASE_DIR if args.record else None)
    if run.session is not None:
        configure_file_logging(run.session.log_file)
        print(f"Recording: {run.session.root}")

    try:
        async with run.controller:
            if not args.quiet:
                run.controller.add_sink(PrintRecordSink())

            await _connect(run, args.device)

            t0 = time.monotonic()
            while args.secs is None or time.monotonic() - t0 < args.secs:
                if not run.controller.state.connected:
                    print("Link lost.")
                    return 1
                await asyncio.sleep(0.2)

            await run.controller.session.wait_idle()
            print_status(run.controller.status())
            await run.controller.disconnect()
        return 0
    finally:
        _close_run(run)
        if run.session is not None:
            kinds = recorded_kinds(run.session.session_json)
            print(f"Recorded: {', '.join(kinds) or '(nothing)'}")


def cmd_monitor(args: argparse.Namespace) -> int:
    return asyncio.run(_cmd_monitor(args))


async def _cmd_send(args: argparse.Namespace) -> int:
    run = start_run(_config(args))
    try:
        async with run.controller:
            run.controller.add_sink(PrintRecordSink())
            await _connect(run, args.device)

            for text in args.commands:
                await run.controller.send_raw(text)
                print(f"SENT: {text}")

            if args.wait_secs > 0:
                await asyncio.sleep(args.wait_secs)
            await run.controller.session.wait_idle()
            await run.controller.disconnect()
        return 0
    finally:
        _close_run(run)


def cmd_send(args: argparse.Namespace) -> int:
    return asyncio.run(_cmd_send(args))


def _close_run(run: AppRun) -> None:
    if run.recorder is not None:
        try:
            run.recorder.close()
        except Exception:
            logging.getLogger(__name__).exception("RECORDER_CLOSE_ERROR")
    try:
        run.cmd_sink.close()
    except Exception:
        logging.getLogger(__name__).exception("CMD_SINK_CLOSE_ERROR")
