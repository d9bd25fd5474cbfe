# bletelemetry/app/config.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TelemetryConfig:
    protocol_dir: str
    variant: str = "battery_tester"
    scan_timeout_s: float = 10.0
    settle_delay_s: float = 1.0
    inter_command_delay_s: float = 0.1
    connect_timeout_s: float = 10.0
    history_size: int = 50
