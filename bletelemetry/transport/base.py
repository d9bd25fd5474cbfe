from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class Advertisement:
    """One scan hit as reported by the radio."""
    device_id: str
    name: Optional[str]
    rssi: int = 0


OnFound = Callable[[Advertisement], None]
OnData = Callable[[bytes], None]
OnLost = Callable[[str], None]


class ScanHandle(ABC):
    """Running discovery; stop() is idempotent."""

    @abstractmethod
    async def stop(self) -> None: ...


class Subscription(ABC):
    """Active notification subscription; cancel() is idempotent."""

    @abstractmethod
    async def cancel(self) -> None: ...


class Transport(ABC):
    """
    Abstract radio capability (BLE today; anything with the same shape tomorrow).

    Contract:
      - scan(on_found, timeout_s) starts discovery and returns at once; on_found
        may be called many times per device. The backend may stop by itself
        after timeout_s; callers still call handle.stop().
      - connect(device_id, on_lost) returns an opaque connection handle.
        on_lost(reason) is called once if the link drops without close().
      - resolve_channel(conn, service, characteristic) returns an opaque channel
        handle or raises ServiceNotFound / CharacteristicNotFound.
      - subscribe(channel, on_data) delivers notification payloads in arrival order.
      - write(channel, data) completes when the peer confirmed the write.
      - close(conn) releases the link; it may raise, callers must not rely on it.

    Callbacks are invoked on the event loop thread.
    """

    @abstractmethod
    async def scan(self, on_found: OnFound, timeout_s: float) -> ScanHandle: ...

    @abstractmethod
    async def connect(self, device_id: str, on_lost: OnLost) -> Any: ...

    @abstractmethod
    async def resolve_channel(self, conn: Any, service_uuid: str, characteristic_uuid: str) -> Any: ...

    @abstractmethod
    async def subscribe(self, channel: Any, on_data: OnData) -> Subscription: ...

    @abstractmethod
    async def write(self, channel: Any, data: bytes) -> None: ...

    @abstractmethod
    async def close(self, conn: Any) -> None: ...
