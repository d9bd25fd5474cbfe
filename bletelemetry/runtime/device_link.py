# bletelemetry/runtime/device_link.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from bletelemetry.protocol.core.defs import Protocol
from bletelemetry.transport.base import OnData, OnLost, Subscription, Transport
from bletelemetry.transport.errors import (
    CharacteristicNotFound,
    ServiceNotFound,
    TransportError,
    TransportPermissionError,
    TransportUnavailable,
)

from bletelemetry.core.errors import (
    CharacteristicNotFoundError,
    CommandSendError,
    ConnectionFailedError,
    NotConnectedError,
    PermissionDeniedError,
    ServiceNotFoundError,
    TelemetryError,
    TransportUnavailableError,
)


def translate_transport_error(e: TransportError, *, device_id: Optional[str] = None) -> TelemetryError:
    """Map a low-level transport failure onto the operator-facing taxonomy."""
    details = {"device_id": device_id} if device_id else {}

    if isinstance(e, TransportPermissionError):
        return PermissionDeniedError(
            "Bluetooth access was denied.",
            hint=str(e) or "Grant Bluetooth permission to this program.",
            details=details,
        )
    if isinstance(e, TransportUnavailable):
        return TransportUnavailableError(
            "Bluetooth is not available.",
            hint=str(e) or "Check the adapter is present and powered on.",
            details=details,
        )
    if isinstance(e, ServiceNotFound):
        return ServiceNotFoundError(
            "Telemetry service not found on device.",
            hint=str(e),
            details=details,
        )
    if isinstance(e, CharacteristicNotFound):
        return CharacteristicNotFoundError(
            "Telemetry characteristic not found on device.",
            hint=str(e),
            details=details,
        )
    return ConnectionFailedError(
        "Could not connect to device.",
        hint=str(e),
        details=details,
    )


def _unexpected(e: Exception, device_id: str) -> ConnectionFailedError:
    return ConnectionFailedError(
        "Could not connect to device.",
        hint=str(e) or type(e).__name__,
        details={"device_id": device_id},
    )


@dataclass
class DeviceLink:
    """
    One live connection to the instrument.

    Responsibilities:
      - connect, resolve the service/characteristic pair, subscribe
      - write raw bytes to the channel
      - release everything on close(), even if the radio misbehaves
      - translate low-level failures into operator-safe errors
    """

    proto: Protocol
    transport: Transport
    logger: Optional[logging.Logger] = None

    def __post_init__(self) -> None:
        self._log = self.logger or logging.getLogger(__name__)
        self._conn: Any = None
        self._channel: Any = None
        self._subscription: Optional[Subscription] = None
        self.device_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None and self._channel is not None

    async def open(self, device_id: str, *, on_data: OnData, on_lost: OnLost) -> None:
        if self.is_open:
            return

        try:
            self._conn = await self.transport.connect(device_id, on_lost)
        except TransportError as e:
            self._log.warning("LINK_CONNECT_FAILED device_id=%s err=%s", device_id, e)
            raise translate_transport_error(e, device_id=device_id) from None
        except Exception as e:
            self._log.exception("LINK_CONNECT_ERROR device_id=%s", device_id)
            raise _unexpected(e, device_id) from None

        self.device_id = device_id

        try:
            self._channel = await self.transport.resolve_channel(
                self._conn,
                self.proto.service_uuid,
                self.proto.characteristic_uuid,
            )
            self._subscription = await self.transport.subscribe(self._channel, on_data)
        except TransportError as e:
            self._log.warning("LINK_SETUP_FAILED device_id=%s err=%s", device_id, e)
            await self._cleanup_after_failed_open()
            raise translate_transport_error(e, device_id=device_id) from None
        except asyncio.CancelledError:
            await self._cleanup_after_failed_open()
            raise
        except Exception as e:
            self._log.exception("LINK_SETUP_ERROR device_id=%s", device_id)
            await self._cleanup_after_failed_open()
            raise _unexpected(e, device_id) from None

        self._log.info(
            "LINK_OPEN device_id=%s service=%s characteristic=%s",
            device_id,
            self.proto.service_uuid,
            self.proto.characteristic_uuid,
        )

    async def _cleanup_after_failed_open(self) -> None:
        conn = self._conn
        self._conn = None
        self._channel = None
        self._subscription = None
        if conn is None:
            return
        try:
            await self.transport.close(conn)
        except Exception:
            self._log.debug("LINK_CLOSE_AFTER_FAILED_OPEN_ERROR", exc_info=True)

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise NotConnectedError("Device not connected.")
        try:
            await self.transport.write(self._channel, data)
        except TransportError as e:
            self._log.warning("LINK_WRITE_FAILED len=%d err=%s", len(data), e)
            raise CommandSendError(
                "Write to device failed.",
                hint=str(e),
                details={"device_id": self.device_id},
            ) from None

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        conn, self._conn = self._conn, None
        self._channel = None

        if subscription is not None:
            try:
                await subscription.cancel()
            except Exception:
                self._log.exception("Failed to cancel notification subscription")

        if conn is not None:
            try:
                await self.transport.close(conn)
            except Exception:
                self._log.exception("Failed to close connection")

        if self.device_id is not None:
            self._log.info("LINK_CLOSED device_id=%s", self.device_id)
        self.device_id = None
