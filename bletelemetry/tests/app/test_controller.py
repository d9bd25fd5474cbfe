from __future__ import annotations

import asyncio
import csv
import json

import pytest

from bletelemetry.app.config import TelemetryConfig
from bletelemetry.app.controller import AlarmThresholds, TelemetryController
from bletelemetry.app.runner import start_run
from bletelemetry.core.context import DEFAULT_PROTOCOL_ROOT, Context
from bletelemetry.core.errors import ConfigError
from bletelemetry.interfaces.command_sink import CommandEvent
from bletelemetry.runtime.state import ConnectionStatus
from bletelemetry.transport.base import ScanHandle, Subscription, Transport


class _Sub(Subscription):
    async def cancel(self):
        return None


class _Handle(ScanHandle):
    async def stop(self):
        return None


class FakeTransport(Transport):
    def __init__(self):
        self.on_data = None
        self.writes = []

    async def scan(self, on_found, timeout_s):
        return _Handle()

    async def connect(self, device_id, on_lost):
        return device_id

    async def resolve_channel(self, conn, service_uuid, characteristic_uuid):
        return conn

    async def subscribe(self, channel, on_data):
        self.on_data = on_data
        return _Sub()

    async def write(self, channel, data):
        self.writes.append(data)

    async def close(self, conn):
        return None


class ListSink:
    def __init__(self):
        self.records = []
        self.closed = False

    def on_record(self, record):
        self.records.append(record)

    def close(self):
        self.closed = True


class EventSink:
    def __init__(self):
        self.events: list[CommandEvent] = []

    def on_command(self, event):
        self.events.append(event)

    def close(self):
        pass


def _config(variant: str) -> TelemetryConfig:
    return TelemetryConfig(
        protocol_dir=str(DEFAULT_PROTOCOL_ROOT),
        variant=variant,
        settle_delay_s=60.0,
        inter_command_delay_s=0.0,
    )


def _controller(variant: str, transport: FakeTransport, **kw) -> TelemetryController:
    return TelemetryController(
        _config(variant),
        context=Context.load(variant=variant),
        transport=transport,
        **kw,
    )


def test_battery_intents_write_expected_lines():
    t = FakeTransport()

    async def main():
        async with _controller("battery_tester", t) as c:
            await c.connect("AA")
            await c.set_target_current(2.5)
            await c.start_test()
            await c.stop_test()
            await c.get_config()
            await c.send_raw("  GET_STATUS  ")

    asyncio.run(main())

    assert t.writes == [
        b"SET_CURRENT:2.5\n",
        b"START_TEST\n",
        b"STOP_TEST\n",
        b"GET_CONFIG\n",
        b"GET_STATUS\n",
    ]


def test_alarm_thresholds_are_sent_as_one_batch():
    t = FakeTransport()
    sink = EventSink()

    async def main():
        async with _controller("current_monitor", t, cmd_sink=sink) as c:
            await c.connect("AA")
            n = await c.set_alarm_thresholds(AlarmThresholds(current_high=30, voltage_low=11.5, enabled=False))
            await c.zero_calibration()
            await c.calibrate(10.0)
            await c.reset_statistics()
            return n

    n = asyncio.run(main())

    assert n == 5
    assert t.writes == [
        b"ALARM_HIGH:30\n",
        b"ALARM_LOW:-45\n",
        b"V_ALARM_HIGH:15\n",
        b"V_ALARM_LOW:11.5\n",
        b"ALARM_EN:0\n",
        b"ZERO_CAL\n",
        b"CAL:10\n",
        b"RESET\n",
    ]
    assert [e.kind for e in sink.events if e.name == "ALARM_EN"] == ["send", "ok"]


def test_intent_missing_from_variant_raises_config_error():
    t = FakeTransport()

    async def main():
        async with _controller("current_monitor", t) as c:
            await c.connect("AA")
            with pytest.raises(ConfigError) as ei:
                await c.start_test()
            return ei.value

    err = asyncio.run(main())

    assert err.details == {"command": "START_TEST", "variant": "current_monitor"}
    assert t.writes == []


def test_records_fan_out_to_sinks_and_stop_closes_them(caplog):
    t = FakeTransport()
    good = ListSink()

    class Broken(ListSink):
        def on_record(self, record):
            raise RuntimeError("disk full")

    async def main():
        c = _controller("battery_tester", t)
        c.add_sink(good)
        c.add_sink(good)
        c.add_sink(Broken())
        await c.start()
        await c.connect("AA")
        t.on_data(b"DATA:12.5,1.0,1.0,10,STOPPED,5\n")
        await c.session.wait_idle()
        await c.stop()
        return c

    c = asyncio.run(main())

    assert [r.kind for r in good.records] == ["live"]
    assert good.closed
    assert c.state.status is ConnectionStatus.IDLE
    assert any("SINK_ON_RECORD_ERROR" in m for m in caplog.messages)


def test_start_run_records_session_to_disk(tmp_path):
    t = FakeTransport()
    cfg = _config("battery_tester")

    async def main():
        run = start_run(cfg, sessions_base_dir=tmp_path, transport=t)
        async with run.controller as c:
            await c.connect("AA:BB")
            t.on_data(b"DATA:12.5,1.0,1.0,10,STOPPED,5\nCONFIG:Max_Current=15\n")
            await c.session.wait_idle()
            await c.get_status()
            history = run.history.history("live")
        run.cmd_sink.close()
        return run, history

    run, history = asyncio.run(main())

    session = json.loads(run.session.session_json.read_text(encoding="utf-8"))
    assert session["protocol"]["variant"] == "battery_tester"
    assert set(session["protocol"]["files_sha256"]) == {
        "commands.yml",
        "constants.yml",
        "markers.yml",
        "records.yml",
    }
    assert session["device"] == {"device_id": "AA:BB", "device_name": "Battery Tester"}
    assert sorted(session["records"]) == ["config", "live"]

    live_file = run.session.records_dir / session["records"]["live"]["file"]
    with open(live_file, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert rows[0]["voltage"] == "12.5"
    assert rows[0]["test_status"] == "STOPPED"

    trace = [json.loads(line) for line in run.session.commands_jsonl.read_text(encoding="utf-8").splitlines()]
    assert [(e["name"], e["kind"]) for e in trace] == [("GET_STATUS", "send"), ("GET_STATUS", "ok")]
    assert all(e["variant"] == "battery_tester" for e in trace)
    assert history[0].voltage == 12.5


def test_start_run_without_sessions_dir_touches_no_disk(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    run = start_run(_config("battery_tester"), transport=FakeTransport())
    run.cmd_sink.close()

    assert run.session is None
    assert run.recorder is None
    assert list(tmp_path.iterdir()) == []
