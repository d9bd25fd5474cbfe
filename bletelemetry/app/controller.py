# bletelemetry/app/controller.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from bletelemetry.app.config import TelemetryConfig
from bletelemetry.core.context import Context
from bletelemetry.core.errors import ConfigError
from bletelemetry.interfaces.command_sink import CommandSink
from bletelemetry.interfaces.record_sink import RecordSink
from bletelemetry.protocol.core.records import TelemetryRecord
from bletelemetry.runtime.device_session import TelemetrySession
from bletelemetry.runtime.state import (
    ConnectionState,
    DiscoveredDevice,
    SessionStatus,
    TelemetrySnapshot,
)
from bletelemetry.transport.base import Transport


@dataclass(frozen=True)
class AlarmThresholds:
    """Current-monitor alarm limits (A / V)."""
    current_high: float = 45.0
    current_low: float = -45.0
    voltage_high: float = 15.0
    voltage_low: float = 10.0
    enabled: bool = True

    def commands(self) -> List[Tuple[str, Tuple[Any, ...]]]:
        return [
            ("ALARM_HIGH", (self.current_high,)),
            ("ALARM_LOW", (self.current_low,)),
            ("V_ALARM_HIGH", (self.voltage_high,)),
            ("V_ALARM_LOW", (self.voltage_low,)),
            ("ALARM_EN", (self.enabled,)),
        ]


class TelemetryController:
    """
    App-level controller: owns the session, fans records out to sinks and
    exposes instrument intents (start a test, set thresholds, ...).
    """

    def __init__(
        self,
        config: TelemetryConfig,
        *,
        context: Context,
        transport: Transport,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._context = context
        self._log = logger or logging.getLogger(__name__)

        self._session = TelemetrySession(
            proto=context.protocol,
            transport=transport,
            scan_timeout_s=config.scan_timeout_s,
            settle_delay_s=config.settle_delay_s,
            inter_command_delay_s=config.inter_command_delay_s,
            cmd_sink=cmd_sink,
            logger=self._log,
        )

        self._record_sinks: List[RecordSink] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def context(self) -> Context:
        return self._context

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def session(self) -> TelemetrySession:
        return self._session

    def add_sink(self, sink: RecordSink) -> None:
        if sink not in self._record_sinks:
            self._record_sinks.append(sink)

    def remove_sink(self, sink: RecordSink) -> None:
        if sink in self._record_sinks:
            self._record_sinks.remove(sink)

    async def start(self) -> None:
        self._subscribe_once()
        await self._session.start()

    async def stop(self) -> None:
        if self._unsubscribe:
            try:
                self._unsubscribe()
            finally:
                self._unsubscribe = None

        try:
            await self._session.close()
        except Exception:
            self._log.exception("SESSION_CLOSE_ERROR")

        for s in list(self._record_sinks):
            try:
                s.close()
            except Exception:
                self._log.exception("SINK_CLOSE_ERROR")
        self._record_sinks.clear()

    async def __aenter__(self) -> "TelemetryController":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    def _subscribe_once(self) -> None:
        if self._unsubscribe is not None:
            return

        def _fanout(record: TelemetryRecord) -> None:
            for s in list(self._record_sinks):
                try:
                    s.on_record(record)
                except Exception:
                    self._log.exception("SINK_ON_RECORD_ERROR kind=%s", record.kind)

        self._unsubscribe = self._session.subscribe_records(_fanout)

    # ---------------- passthrough ----------------
    def status(self) -> SessionStatus:
        return self._session.status()

    @property
    def state(self) -> ConnectionState:
        return self._session.state

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._session.snapshot

    @property
    def devices(self) -> Tuple[DiscoveredDevice, ...]:
        return self._session.discovered_devices

    async def scan(self) -> None:
        await self._session.request_scan()

    async def connect(self, device_id: str) -> None:
        await self._session.request_connect(device_id)

    async def disconnect(self) -> None:
        await self._session.request_disconnect()

    async def send_raw(self, text: str) -> None:
        await self._session.send(text)

    # ---------------- instrument intents ----------------
    async def start_test(self) -> None:
        await self._command("START_TEST")

    async def stop_test(self) -> None:
        await self._command("STOP_TEST")

    async def set_target_current(self, amps: float) -> None:
        await self._command("SET_CURRENT", float(amps))

    async def get_status(self) -> None:
        await self._command("GET_STATUS")

    async def get_config(self) -> None:
        await self._command("GET_CONFIG")

    async def zero_calibration(self) -> None:
        await self._command("ZERO_CAL")

    async def reset_statistics(self) -> None:
        await self._command("RESET")

    async def calibrate(self, reference_current: float) -> None:
        await self._command("CAL", float(reference_current))

    async def set_alarm_thresholds(self, thresholds: AlarmThresholds) -> int:
        items = thresholds.commands()
        for name, _ in items:
            self._require(name)
        self._log.info(
            "SET_ALARM_THRESHOLDS i_high=%s i_low=%s v_high=%s v_low=%s enabled=%s",
            thresholds.current_high,
            thresholds.current_low,
            thresholds.voltage_high,
            thresholds.voltage_low,
            thresholds.enabled,
        )
        return await self._session.send_commands(items)

    async def _command(self, name: str, *args: Any) -> None:
        self._require(name)
        await self._session.send_command(name, *args)

    def _require(self, name: str) -> None:
        if not self._context.protocol.has_command(name):
            raise ConfigError(
                f"Command {name} is not supported by variant '{self._context.variant}'.",
                hint="Pick the protocol variant that matches the connected instrument.",
                details={"command": name, "variant": self._context.variant},
            )
