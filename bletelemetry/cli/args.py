# bletelemetry/cli/args.py
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from bletelemetry.core.context import DEFAULT_PROTOCOL_ROOT


PROTOCOL_DIR = str(DEFAULT_PROTOCOL_ROOT)
DEFAULT_VARIANT = "battery_tester"
SESSIONS_BASE_DIR = Path("data") / "sessions"


def positive_float(v: str) -> float:
    try:
        f = float(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{v}'") from None
    if f <= 0:
        raise argparse.ArgumentTypeError(f"Must be > 0, got {v}")
    return f


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bletelemetry")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More console logging (-vv for debug).")
    parser.add_argument("--protocol-dir", default=PROTOCOL_DIR, help="Root directory of the protocol variants.")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("variants", help="List available protocol variants.")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--variant", default=DEFAULT_VARIANT, help="Protocol variant (see: bletelemetry variants).")
    common.add_argument("--scan-secs", type=positive_float, default=10.0, help="Discovery timeout.")

    sub.add_parser("scan", parents=[common], help="Discover matching devices.")

    device = argparse.ArgumentParser(add_help=False)
    device.add_argument(
        "--device",
        default=None,
        help="Device id (address). Default: first device found by a scan.",
    )
    device.add_argument("--settle-secs", type=float, default=1.0, help="Delay before startup commands.")

    pm = sub.add_parser("monitor", parents=[common, device], help="Print (and optionally record) live telemetry.")
    pm.add_argument("--secs", type=positive_float, default=None, help="Stop after N seconds (default: Ctrl+C).")
    pm.add_argument("--record", action="store_true", help="Record records/commands into a session directory.")
    pm.add_argument("--quiet", action="store_true", help="Do not print each record.")

    ps = sub.add_parser("send", parents=[common, device], help="Send raw command line(s) and print replies.")
    ps.add_argument("commands", nargs="+", help="Command lines, e.g. GET_STATUS SET_CURRENT:2.5")
    ps.add_argument("--wait-secs", type=float, default=1.0, help="Time to collect replies after sending.")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)
