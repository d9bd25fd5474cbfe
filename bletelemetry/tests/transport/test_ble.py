from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from bleak.exc import BleakError

import bletelemetry.transport.ble as ble
from bletelemetry.transport.base import Advertisement
from bletelemetry.transport.errors import (
    CharacteristicNotFound,
    ServiceNotFound,
    TransportIOError,
    TransportOpenError,
    TransportPermissionError,
    TransportUnavailable,
)


class FakeScanner:
    instances = []
    start_error = None

    def __init__(self, detection_callback=None):
        self.callback = detection_callback
        self.started = False
        self.stops = 0
        FakeScanner.instances.append(self)

    async def start(self):
        if FakeScanner.start_error:
            raise FakeScanner.start_error
        self.started = True

    async def stop(self):
        self.stops += 1


class FakeService:
    def __init__(self, chars):
        self.chars = chars

    def get_characteristic(self, uuid):
        return self.chars.get(uuid)


class FakeServices:
    def __init__(self, services):
        self.services = services

    def get_service(self, uuid):
        return self.services.get(uuid)


class FakeClient:
    instances = []
    connect_error = None

    def __init__(self, address, disconnected_callback=None, timeout=10.0):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.is_connected = False
        self.services = FakeServices({"svc": FakeService({"chr": "CHAR"})})
        self.notify_cb = None
        self.writes = []
        self.stopped_notify = []
        FakeClient.instances.append(self)

    async def connect(self):
        if FakeClient.connect_error:
            raise FakeClient.connect_error
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False
        if self.disconnected_callback:
            self.disconnected_callback(self)

    async def start_notify(self, char, callback):
        self.notify_cb = callback

    async def stop_notify(self, char):
        self.stopped_notify.append(char)

    async def write_gatt_char(self, char, data, response=False):
        self.writes.append((char, bytes(data), response))


@pytest.fixture(autouse=True)
def fake_bleak(monkeypatch):
    FakeScanner.instances = []
    FakeScanner.start_error = None
    FakeClient.instances = []
    FakeClient.connect_error = None
    monkeypatch.setattr(ble, "BleakScanner", FakeScanner)
    monkeypatch.setattr(ble, "BleakClient", FakeClient)


def test_scan_reports_advertisements_and_stops_once():
    found = []

    async def main():
        t = ble.BleakTransport()
        handle = await t.scan(found.append, timeout_s=5)
        scanner = FakeScanner.instances[0]
        scanner.callback(
            SimpleNamespace(address="AA:BB", name=None),
            SimpleNamespace(local_name="JDY-23", rssi=-55),
        )
        await handle.stop()
        await handle.stop()
        return scanner

    scanner = asyncio.run(main())

    assert found == [Advertisement(device_id="AA:BB", name="JDY-23", rssi=-55)]
    assert scanner.stops == 1


@pytest.mark.parametrize(
    "err, expected",
    [
        (BleakError("Bluetooth device is turned off"), TransportUnavailable),
        (BleakError("org.bluez.Error.NotAuthorized: not authorized"), TransportPermissionError),
        (PermissionError("denied"), TransportPermissionError),
        (OSError("no adapter"), TransportUnavailable),
    ],
)
def test_scan_start_errors_are_classified(err, expected):
    FakeScanner.start_error = err

    with pytest.raises(expected):
        asyncio.run(ble.BleakTransport().scan(lambda a: None, timeout_s=1))


def test_connect_resolve_subscribe_write():
    data = []

    async def main():
        t = ble.BleakTransport(connect_timeout_s=3)
        conn = await t.connect("AA:BB", on_lost=lambda r: None)
        chan = await t.resolve_channel(conn, "svc", "chr")
        sub = await t.subscribe(chan, data.append)
        client = FakeClient.instances[0]
        client.notify_cb("CHAR", bytearray(b"DATA:1\n"))
        await t.write(chan, b"GET_STATUS\n")
        await sub.cancel()
        await sub.cancel()
        return client

    client = asyncio.run(main())

    assert client.timeout == 3.0
    assert data == [b"DATA:1\n"]
    assert client.writes == [("CHAR", b"GET_STATUS\n", True)]
    assert client.stopped_notify == ["CHAR"]


def test_resolve_reports_missing_service_and_characteristic():
    async def main():
        t = ble.BleakTransport()
        conn = await t.connect("AA:BB", on_lost=lambda r: None)
        with pytest.raises(ServiceNotFound):
            await t.resolve_channel(conn, "other", "chr")
        with pytest.raises(CharacteristicNotFound):
            await t.resolve_channel(conn, "svc", "other")

    asyncio.run(main())


@pytest.mark.parametrize(
    "err, expected",
    [
        (asyncio.TimeoutError(), TransportOpenError),
        (BleakError("Device with address AA:BB was not found"), TransportOpenError),
        (PermissionError("denied"), TransportPermissionError),
    ],
)
def test_connect_errors_are_classified(err, expected):
    FakeClient.connect_error = err

    with pytest.raises(expected):
        asyncio.run(ble.BleakTransport().connect("AA:BB", on_lost=lambda r: None))


def test_on_lost_only_for_unrequested_disconnect():
    lost = []

    async def main():
        t = ble.BleakTransport()
        conn = await t.connect("AA:BB", on_lost=lost.append)
        client = FakeClient.instances[0]
        client.disconnected_callback(client)
        await t.close(conn)

    asyncio.run(main())

    assert lost == ["link lost"]


def test_write_on_dropped_link_raises_io_error():
    async def main():
        t = ble.BleakTransport()
        conn = await t.connect("AA:BB", on_lost=lambda r: None)
        chan = await t.resolve_channel(conn, "svc", "chr")
        FakeClient.instances[0].is_connected = False
        await t.write(chan, b"START_TEST\n")

    with pytest.raises(TransportIOError):
        asyncio.run(main())


def test_service_discovery_failure_is_an_open_error(monkeypatch):
    class DroppedClient(FakeClient):
        @property
        def services(self):
            raise BleakError("Service Discovery has not been performed yet")

        @services.setter
        def services(self, value):
            pass

    monkeypatch.setattr(ble, "BleakClient", DroppedClient)

    async def main():
        t = ble.BleakTransport()
        conn = await t.connect("AA:BB", on_lost=lambda r: None)
        await t.resolve_channel(conn, "svc", "chr")

    with pytest.raises(TransportOpenError):
        asyncio.run(main())
