from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from .base import Advertisement, OnData, OnFound, OnLost, ScanHandle, Subscription, Transport
from .errors import (
    CharacteristicNotFound,
    ServiceNotFound,
    TransportIOError,
    TransportOpenError,
    TransportPermissionError,
    TransportUnavailable,
)

_PERMISSION_HINTS = ("permission", "denied", "not authorized", "unauthorized")


def _radio_error(e: BaseException) -> Exception:
    """Classify an error raised while touching the adapter itself."""
    if isinstance(e, PermissionError):
        return TransportPermissionError(str(e))
    text = str(e).lower()
    if any(h in text for h in _PERMISSION_HINTS):
        return TransportPermissionError(str(e))
    return TransportUnavailable(str(e) or type(e).__name__)


@dataclass
class BleakConnection:
    device_id: str
    client: BleakClient
    closing: bool = False


@dataclass
class BleakChannel:
    client: BleakClient
    characteristic: Any


class _BleakScanHandle(ScanHandle):
    def __init__(self, scanner: BleakScanner, logger: logging.Logger):
        self._scanner = scanner
        self._stopped = False
        self._log = logger

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        try:
            await self._scanner.stop()
        except BleakError:
            self._log.warning("BLE_SCAN_STOP_FAILED", exc_info=True)


@dataclass
class _BleakSubscription(Subscription):
    channel: BleakChannel
    logger: logging.Logger
    cancelled: bool = field(default=False)

    async def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if not self.channel.client.is_connected:
            return
        try:
            await self.channel.client.stop_notify(self.channel.characteristic)
        except BleakError:
            self.logger.warning("BLE_STOP_NOTIFY_FAILED", exc_info=True)


class BleakTransport(Transport):
    """
    BLE transport implemented via bleak.

    Device ids are whatever bleak reports as address (MAC on Linux/Windows,
    CoreBluetooth UUID on macOS).
    """

    def __init__(self, *, connect_timeout_s: float = 10.0, logger: Optional[logging.Logger] = None):
        self.connect_timeout_s = float(connect_timeout_s)
        self._log = logger or logging.getLogger(__name__)

    async def scan(self, on_found: OnFound, timeout_s: float) -> ScanHandle:
        def _detected(device: BLEDevice, adv: AdvertisementData) -> None:
            on_found(
                Advertisement(
                    device_id=device.address,
                    name=device.name or adv.local_name,
                    rssi=int(adv.rssi if adv.rssi is not None else 0),
                )
            )

        scanner = BleakScanner(detection_callback=_detected)
        try:
            await scanner.start()
        except (BleakError, OSError) as e:
            raise _radio_error(e) from None

        self._log.debug("BLE_SCAN_STARTED timeout_s=%.1f", timeout_s)
        return _BleakScanHandle(scanner, self._log)

    async def connect(self, device_id: str, on_lost: OnLost) -> BleakConnection:
        conn: Optional[BleakConnection] = None

        def _disconnected(_client: BleakClient) -> None:
            if conn is not None and not conn.closing:
                on_lost("link lost")

        client = BleakClient(device_id, disconnected_callback=_disconnected, timeout=self.connect_timeout_s)
        conn = BleakConnection(device_id=device_id, client=client)

        try:
            await client.connect()
        except asyncio.TimeoutError:
            raise TransportOpenError(f"connect to {device_id} timed out after {self.connect_timeout_s}s") from None
        except PermissionError as e:
            raise TransportPermissionError(str(e)) from None
        except (BleakError, OSError) as e:
            raise TransportOpenError(str(e) or type(e).__name__) from None

        return conn

    async def resolve_channel(self, conn: BleakConnection, service_uuid: str, characteristic_uuid: str) -> BleakChannel:
        try:
            service = conn.client.services.get_service(service_uuid)
        except BleakError as e:
            raise TransportOpenError(f"service discovery failed on {conn.device_id}: {e}") from None
        if service is None:
            raise ServiceNotFound(f"service {service_uuid} not found on {conn.device_id}")

        char = service.get_characteristic(characteristic_uuid)
        if char is None:
            raise CharacteristicNotFound(f"characteristic {characteristic_uuid} not found on {conn.device_id}")

        return BleakChannel(client=conn.client, characteristic=char)

    async def subscribe(self, channel: BleakChannel, on_data: OnData) -> Subscription:
        try:
            await channel.client.start_notify(channel.characteristic, lambda _c, data: on_data(bytes(data)))
        except BleakError as e:
            raise TransportOpenError(f"start_notify failed: {e}") from None
        return _BleakSubscription(channel=channel, logger=self._log)

    async def write(self, channel: BleakChannel, data: bytes) -> None:
        if not channel.client.is_connected:
            raise TransportIOError("write while link is down")
        try:
            await channel.client.write_gatt_char(channel.characteristic, data, response=True)
        except (BleakError, OSError) as e:
            raise TransportIOError(f"BLE write failed: {e}") from None

    async def close(self, conn: BleakConnection) -> None:
        conn.closing = True
        try:
            await conn.client.disconnect()
        except (BleakError, OSError) as e:
            raise TransportIOError(f"BLE disconnect failed: {e}") from None
