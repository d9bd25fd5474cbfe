# bletelemetry/runtime/device_session.py
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bletelemetry.core.errors import NotConnectedError, SessionStateError, TelemetryError
from bletelemetry.interfaces.command_sink import CommandSink
from bletelemetry.protocol._internal.rx_worker import RxWorker
from bletelemetry.protocol.core import (
    LifecycleMarker,
    LineReassembler,
    MessageDecoder,
    Protocol,
    TelemetryRecord,
    Unrecognized,
)
from bletelemetry.protocol.engine import CommandChannel, CommandItem
from bletelemetry.runtime.device_link import DeviceLink, translate_transport_error
from bletelemetry.runtime.events import DeviceFound, LinkLost, Notification, SessionEvent
from bletelemetry.runtime.state import (
    ConnectionState,
    ConnectionStatus,
    DiscoveredDevice,
    SessionStatus,
    TelemetrySnapshot,
)
from bletelemetry.transport.base import Advertisement, ScanHandle, Transport
from bletelemetry.transport.errors import TransportError

StateCallback = Callable[[ConnectionState], None]
RecordCallback = Callable[[TelemetryRecord], None]
DevicesCallback = Callable[[Tuple[DiscoveredDevice, ...]], None]


class _LiveLinkWriter:
    """Writes through whichever link the session holds right now."""

    def __init__(self, current: Callable[[], Optional[DeviceLink]]):
        self._current = current

    async def write(self, data: bytes) -> None:
        link = self._current()
        if link is None:
            raise NotConnectedError("Device not connected.")
        await link.write(data)


class TelemetrySession:
    """
    One telemetry session: scan, connect, decode, command.

    Idle -> Scanning -> Connecting -> Connected -> Disconnecting -> Idle,
    plus a jump to Idle on radio loss.

    Every transport callback is queued as an event tagged with the scan id
    or connection epoch it belongs to, and a single worker task applies them
    in arrival order. Ending a scan or a connection bumps the tag, so events
    still in flight for it are dropped instead of applied.
    """

    def __init__(
        self,
        *,
        proto: Protocol,
        transport: Transport,
        scan_timeout_s: float = 10.0,
        settle_delay_s: float = 1.0,
        inter_command_delay_s: float = 0.1,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._proto = proto
        self._transport = transport
        self._log = logger or logging.getLogger(__name__)
        self._clock = clock

        self.scan_timeout_s = float(scan_timeout_s)
        self.settle_delay_s = float(settle_delay_s)

        # one DeviceLink per connect attempt; set once the attempt reaches Connected
        self._link: Optional[DeviceLink] = None
        self._reassembler = LineReassembler(proto.delimiter, proto.encoding, logger=self._log)
        self._decoder = MessageDecoder(proto, logger=self._log, clock=clock)
        self._channel = CommandChannel(
            proto,
            _LiveLinkWriter(lambda: self._link),
            is_connected=lambda: self._state.connected,
            inter_command_delay_s=inter_command_delay_s,
            cmd_sink=cmd_sink,
            logger=self._log,
        )

        self._queue: "asyncio.Queue[SessionEvent]" = asyncio.Queue()
        self._worker: RxWorker[SessionEvent] = RxWorker(
            self._queue, self._handle_event, logger=self._log, name="bletelemetry-session"
        )

        self._state = ConnectionState()
        self._snapshot = TelemetrySnapshot()
        self._devices: Dict[str, DiscoveredDevice] = {}

        self._scan_id = 0
        self._epoch = 0
        self._scan_handle: Optional[ScanHandle] = None
        self._scan_timer: Optional[asyncio.Task] = None
        self._startup_task: Optional[asyncio.Task] = None

        self._state_cbs: List[StateCallback] = []
        self._record_cbs: List[RecordCallback] = []
        self._devices_cbs: List[DevicesCallback] = []

    # ---------------- Read views ----------------
    @property
    def proto(self) -> Protocol:
        return self._proto

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    @property
    def discovered_devices(self) -> Tuple[DiscoveredDevice, ...]:
        return tuple(self._devices.values())

    def status(self) -> SessionStatus:
        return SessionStatus(
            connection=self._state,
            telemetry=self._snapshot,
            devices=self.discovered_devices,
        )

    # ---------------- Scan ----------------
    async def request_scan(self) -> None:
        self._ensure_worker()
        status = self._state.status
        if status is ConnectionStatus.SCANNING:
            self._log.info("SCAN_RESTART")
            await self._stop_scan()
        elif status is not ConnectionStatus.IDLE:
            raise SessionStateError(
                f"Cannot scan while {status.value}.",
                hint="Disconnect first.",
                details={"status": status.value},
            )

        self._scan_id += 1
        scan_id = self._scan_id
        self._devices.clear()
        self._notify_devices()
        self._set_state(ConnectionState(status=ConnectionStatus.SCANNING))
        self._log.info("SCAN_START scan_id=%d timeout_s=%.1f", scan_id, self.scan_timeout_s)

        def _on_found(adv: Advertisement) -> None:
            self._queue.put_nowait(DeviceFound(scan_id=scan_id, advertisement=adv))

        try:
            handle = await self._transport.scan(_on_found, self.scan_timeout_s)
        except TransportError as e:
            self._log.warning("SCAN_FAILED err=%s", e)
            if scan_id == self._scan_id:
                self._scan_id += 1
                self._set_state(ConnectionState())
            raise translate_transport_error(e) from None

        if scan_id != self._scan_id:
            # superseded (restart or connect) while the radio was starting up
            await self._stop_handle(handle)
            return

        self._scan_handle = handle
        self._scan_timer = asyncio.get_running_loop().create_task(self._scan_timeout(scan_id))

    async def stop_scan(self) -> None:
        """End a running scan early; the discovered list is kept."""
        if self._state.status is not ConnectionStatus.SCANNING:
            return
        await self._stop_scan()
        self._set_state(ConnectionState())
        self._log.info("SCAN_STOPPED devices=%d", len(self._devices))

    async def _scan_timeout(self, scan_id: int) -> None:
        await asyncio.sleep(self.scan_timeout_s)
        if scan_id != self._scan_id or self._state.status is not ConnectionStatus.SCANNING:
            return
        self._scan_timer = None
        await self._stop_scan()
        self._set_state(ConnectionState())
        self._log.info("SCAN_TIMEOUT devices=%d", len(self._devices))

    async def _stop_scan(self) -> None:
        self._scan_id += 1
        timer, self._scan_timer = self._scan_timer, None
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        handle, self._scan_handle = self._scan_handle, None
        if handle is not None:
            await self._stop_handle(handle)

    async def _stop_handle(self, handle: ScanHandle) -> None:
        try:
            await handle.stop()
        except Exception:
            self._log.exception("SCAN_STOP_FAILED")

    # ---------------- Connect / disconnect ----------------
    async def request_connect(self, device_id: str) -> None:
        self._ensure_worker()
        status = self._state.status
        if status not in (ConnectionStatus.IDLE, ConnectionStatus.SCANNING):
            raise SessionStateError(
                f"Cannot connect while {status.value}.",
                hint="Disconnect first.",
                details={"status": status.value, "device_id": device_id},
            )
        if status is ConnectionStatus.SCANNING:
            await self._stop_scan()

        self._epoch += 1
        epoch = self._epoch
        known = self._devices.get(device_id)
        device_name = known.name if known else self._proto.default_device_name

        self._reassembler.reset()
        self._set_state(
            ConnectionState(
                status=ConnectionStatus.CONNECTING,
                device_id=device_id,
                device_name=device_name,
            )
        )
        self._log.info("SESSION_CONNECTING device_id=%s epoch=%d", device_id, epoch)

        def _on_data(data: bytes) -> None:
            self._queue.put_nowait(Notification(epoch=epoch, data=bytes(data)))

        def _on_lost(reason: str) -> None:
            self._queue.put_nowait(LinkLost(epoch=epoch, reason=reason))

        link = DeviceLink(proto=self._proto, transport=self._transport, logger=self._log)
        try:
            await link.open(device_id, on_data=_on_data, on_lost=_on_lost)
        except TelemetryError as e:
            self._log.warning(
                "SESSION_CONNECT_FAILED device_id=%s code=%s msg=%s", device_id, e.code, e.message
            )
            if epoch == self._epoch:
                self._epoch += 1
                self._reset_to_idle()
            raise
        except asyncio.CancelledError:
            if epoch == self._epoch:
                self._epoch += 1
                self._reset_to_idle()
            raise

        if epoch != self._epoch:
            # disconnect (or radio loss) arrived while we were connecting
            self._log.info("SESSION_CONNECT_ABANDONED device_id=%s", device_id)
            await link.close()
            return

        self._link = link

        self._set_state(dataclasses.replace(self._state, status=ConnectionStatus.CONNECTED))
        self._log.info("SESSION_CONNECTED device_id=%s name=%s", device_id, device_name)

        if self._proto.startup_commands:
            self._startup_task = asyncio.get_running_loop().create_task(self._run_startup(epoch))

    async def request_disconnect(self) -> None:
        status = self._state.status
        if status in (ConnectionStatus.IDLE, ConnectionStatus.DISCONNECTING):
            return
        if status is ConnectionStatus.SCANNING:
            raise SessionStateError(
                "Cannot disconnect while scanning.",
                hint="Wait for the scan to finish or call stop_scan().",
                details={"status": status.value},
            )
        await self._teardown("requested")

    async def _teardown(self, reason: str) -> None:
        self._epoch += 1
        device_id = self._state.device_id
        self._set_state(dataclasses.replace(self._state, status=ConnectionStatus.DISCONNECTING))

        startup, self._startup_task = self._startup_task, None
        if startup is not None and startup is not asyncio.current_task():
            startup.cancel()

        link, self._link = self._link, None
        try:
            if link is not None:
                await link.close()
        finally:
            self._reset_to_idle()
            self._log.info("SESSION_DISCONNECTED device_id=%s reason=%s", device_id, reason)

    def _reset_to_idle(self) -> None:
        self._reassembler.reset()
        self._snapshot = TelemetrySnapshot()
        self._set_state(ConnectionState())

    async def _run_startup(self, epoch: int) -> None:
        await asyncio.sleep(self.settle_delay_s)
        if epoch != self._epoch or not self._state.connected:
            return
        try:
            await self._channel.send_many(self._proto.startup_commands)
        except TelemetryError as e:
            self._log.warning("STARTUP_COMMANDS_FAILED code=%s msg=%s", e.code, e.message)
        else:
            self._log.info("STARTUP_COMMANDS_SENT cmds=%s", list(self._proto.startup_commands))

    # ---------------- Commands ----------------
    async def send(self, text: str) -> None:
        await self._channel.send_text(text)

    async def send_command(self, cmd_name: str, *args: Any) -> None:
        await self._channel.send(cmd_name, *args)

    async def send_commands(self, items: Iterable[CommandItem]) -> int:
        return await self._channel.send_many(items)

    # ---------------- Event processing ----------------
    def _ensure_worker(self) -> None:
        self._worker.start()

    async def wait_idle(self) -> None:
        """Wait until every event queued so far has been applied."""
        if not self._worker.is_alive():
            return
        await self._queue.join()

    async def _handle_event(self, event: SessionEvent) -> None:
        if isinstance(event, Notification):
            self._on_notification(event)
        elif isinstance(event, DeviceFound):
            self._on_device_found(event)
        elif isinstance(event, LinkLost):
            await self._on_link_lost(event)

    def _on_device_found(self, event: DeviceFound) -> None:
        if event.scan_id != self._scan_id:
            return
        adv = event.advertisement
        if not self._proto.name_matches(adv.name):
            return

        prev = self._devices.get(adv.device_id)
        name = prev.name if prev is not None else (adv.name or "")
        device = DiscoveredDevice(id=adv.device_id, name=name, signal_strength=adv.rssi)
        if self._devices.get(device.id) == device:
            return
        is_new = device.id not in self._devices
        self._devices[device.id] = device
        if is_new:
            self._log.info("DEVICE_FOUND id=%s name=%s rssi=%d", device.id, device.name, device.signal_strength)
        self._notify_devices()

    def _on_notification(self, event: Notification) -> None:
        if event.epoch != self._epoch:
            self._log.debug("STALE_NOTIFICATION_DROPPED epoch=%d current=%d", event.epoch, self._epoch)
            return

        for line in self._reassembler.feed(event.data):
            if not self._state.connected:
                self._log.debug("RECORD_DROPPED_NOT_CONNECTED record=%r", line)
                continue
            self._apply(self._decoder.decode(line))

    def _apply(self, message: Any) -> None:
        if isinstance(message, Unrecognized):
            return

        if isinstance(message, LifecycleMarker):
            self._log.info("LIFECYCLE_MARKER name=%s", message.name)
            if not message.target or not message.changes:
                return
            current = self._snapshot.get(message.target)
            if current is None:
                return
            record = dataclasses.replace(current, timestamp=message.timestamp, **dict(message.changes))
        else:
            record = message

        self._snapshot = self._snapshot.with_record(record)
        self._notify_record(record)

    async def _on_link_lost(self, event: LinkLost) -> None:
        if event.epoch != self._epoch:
            return
        if self._state.status not in (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING):
            return
        self._log.warning("SESSION_LINK_LOST device_id=%s reason=%s", self._state.device_id, event.reason)
        await self._teardown(f"link_lost: {event.reason}")

    # ---------------- Subscriptions ----------------
    def subscribe_state(self, cb: StateCallback) -> Callable[[], None]:
        return self._subscribe(self._state_cbs, cb)

    def subscribe_records(self, cb: RecordCallback) -> Callable[[], None]:
        return self._subscribe(self._record_cbs, cb)

    def subscribe_devices(self, cb: DevicesCallback) -> Callable[[], None]:
        return self._subscribe(self._devices_cbs, cb)

    @staticmethod
    def _subscribe(cbs: List[Any], cb: Any) -> Callable[[], None]:
        cbs.append(cb)

        def _unsubscribe() -> None:
            if cb in cbs:
                cbs.remove(cb)

        return _unsubscribe

    def _set_state(self, state: ConnectionState) -> None:
        state = dataclasses.replace(state, last_update_time=self._clock())
        self._state = state
        for cb in list(self._state_cbs):
            try:
                cb(state)
            except Exception:
                self._log.exception("STATE_CALLBACK_ERROR")

    def _notify_record(self, record: TelemetryRecord) -> None:
        for cb in list(self._record_cbs):
            try:
                cb(record)
            except Exception:
                self._log.exception("RECORD_CALLBACK_ERROR kind=%s", record.kind)

    def _notify_devices(self) -> None:
        devices = self.discovered_devices
        for cb in list(self._devices_cbs):
            try:
                cb(devices)
            except Exception:
                self._log.exception("DEVICES_CALLBACK_ERROR")

    # ---------------- Lifecycle ----------------
    async def close(self) -> None:
        status = self._state.status
        if status is ConnectionStatus.SCANNING:
            await self.stop_scan()
        elif status in (ConnectionStatus.CONNECTED, ConnectionStatus.CONNECTING):
            await self._teardown("closed")
        await self._worker.stop()
        self._log.info("SESSION_CLOSED")

    async def start(self) -> None:
        """Start the event worker; scan/connect also do this on demand."""
        self._ensure_worker()

    async def __aenter__(self) -> "TelemetrySession":
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()
