# bletelemetry/runtime/events.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from bletelemetry.transport.base import Advertisement


@dataclass(frozen=True)
class DeviceFound:
    scan_id: int
    advertisement: Advertisement


@dataclass(frozen=True)
class Notification:
    epoch: int
    data: bytes


@dataclass(frozen=True)
class LinkLost:
    epoch: int
    reason: str


SessionEvent = Union[DeviceFound, Notification, LinkLost]
