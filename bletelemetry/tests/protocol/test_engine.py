from __future__ import annotations

import asyncio
import logging

import pytest

from bletelemetry.core.context import Context
from bletelemetry.core.errors import CommandSendError, NotConnectedError
from bletelemetry.interfaces.command_sink import CommandEvent
from bletelemetry.protocol.engine import CommandChannel


class FakeWriter:
    """Records writes; optionally fails on the n-th write (1-based)."""

    def __init__(self, fail_on: int | None = None, delay: float = 0.0):
        self.writes: list[bytes] = []
        self.fail_on = fail_on
        self.delay = delay
        self.active = 0
        self.max_active = 0

    async def write(self, data: bytes) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_on is not None and len(self.writes) + 1 == self.fail_on:
                raise CommandSendError("Write to device failed.", hint="gatt error")
            self.writes.append(data)
        finally:
            self.active -= 1


class FakeSink:
    def __init__(self):
        self.events: list[CommandEvent] = []

    def on_command(self, event: CommandEvent) -> None:
        self.events.append(event)

    def close(self) -> None:
        return None


@pytest.fixture(scope="module")
def proto():
    return Context.load(variant="current_monitor").protocol


def _channel(proto, writer, *, connected=True, sink=None, sleeps=None):
    async def fake_sleep(s):
        if sleeps is not None:
            sleeps.append(s)

    return CommandChannel(
        proto,
        writer,
        is_connected=lambda: connected,
        inter_command_delay_s=0.1,
        cmd_sink=sink,
        sleep=fake_sleep,
    )


def test_send_text_appends_delimiter(proto):
    w = FakeWriter()
    ch = _channel(proto, w)

    asyncio.run(ch.send_text("GET_STATUS"))

    assert w.writes == [b"GET_STATUS\n"]


def test_send_named_command_with_args(proto):
    w = FakeWriter()
    ch = _channel(proto, w)

    asyncio.run(ch.send("CAL", 2.0))

    assert w.writes == [b"CAL:2\n"]


def test_not_connected_performs_no_write(proto):
    w = FakeWriter()
    sink = FakeSink()
    ch = _channel(proto, w, connected=False, sink=sink)

    with pytest.raises(NotConnectedError) as ei:
        asyncio.run(ch.send_text("RESET"))

    assert ei.value.code == "not_connected"
    assert w.writes == []
    assert sink.events == []


def test_batch_is_sequential_with_delay(proto):
    w = FakeWriter()
    sleeps: list[float] = []
    ch = _channel(proto, w, sleeps=sleeps)

    n = asyncio.run(ch.send_many([("ALARM_HIGH", [45.0]), ("ALARM_LOW", [-45.0]), "RESET"]))

    assert n == 3
    assert w.writes == [b"ALARM_HIGH:45\n", b"ALARM_LOW:-45\n", b"RESET\n"]
    assert sleeps == [0.1, 0.1]


def test_batch_aborts_on_first_failure(proto, caplog):
    w = FakeWriter(fail_on=2)
    sink = FakeSink()
    ch = _channel(proto, w, sink=sink)

    with pytest.raises(CommandSendError):
        asyncio.run(
            ch.send_many([("ALARM_HIGH", [1]), ("ALARM_LOW", [2]), ("V_ALARM_HIGH", [3]), ("V_ALARM_LOW", [4])])
        )

    assert w.writes == [b"ALARM_HIGH:1\n"]
    kinds = [(e.name, e.kind) for e in sink.events]
    assert kinds == [("ALARM_HIGH", "send"), ("ALARM_HIGH", "ok"), ("ALARM_LOW", "send"), ("ALARM_LOW", "error")]
    assert sink.events[-1].payload["error"] == "send_failed"
    assert any("CMD_BATCH_ABORTED sent=1 skipped=2" in m for m in caplog.messages)


def test_batch_with_bad_argument_sends_nothing(proto):
    w = FakeWriter()
    ch = _channel(proto, w)

    with pytest.raises(ValueError):
        asyncio.run(ch.send_many(["RESET", ("CAL", [])]))

    assert w.writes == []


def test_concurrent_sends_are_serialised(proto):
    w = FakeWriter(delay=0.01)
    ch = _channel(proto, w)

    async def main():
        await asyncio.gather(
            ch.send_text("GET_STATUS"),
            ch.send_many(["ZERO_CAL", "RESET"]),
            ch.send("CAL", 1.5),
        )

    asyncio.run(main())

    assert w.max_active == 1
    assert w.writes == [b"GET_STATUS\n", b"ZERO_CAL\n", b"RESET\n", b"CAL:1.5\n"]


def test_events_carry_request_ids_and_rtt(proto):
    w = FakeWriter()
    sink = FakeSink()
    ch = _channel(proto, w, sink=sink)

    async def main():
        await ch.send("GET_STATUS")
        await ch.send("RESET")

    asyncio.run(main())

    assert [e.request_id for e in sink.events] == ["1", "1", "2", "2"]
    ok = sink.events[1]
    assert ok.kind == "ok"
    assert ok.payload["text"] == "GET_STATUS"
    assert ok.payload["rtt_ms"] >= 0.0


def test_failing_sink_does_not_break_send(proto, caplog):
    class BrokenSink(FakeSink):
        def on_command(self, event):
            raise RuntimeError("disk full")

    w = FakeWriter()
    ch = _channel(proto, w, sink=BrokenSink())

    asyncio.run(ch.send("RESET"))

    assert w.writes == [b"RESET\n"]
    assert any("CMD_SINK_ERROR" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)
