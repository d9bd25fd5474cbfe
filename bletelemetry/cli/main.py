# bletelemetry/cli/main.py
from __future__ import annotations

from typing import Optional

from bletelemetry.core.errors import TelemetryError

from bletelemetry.cli.args import parse_args
from bletelemetry.cli.commands import (
    cmd_monitor,
    cmd_scan,
    cmd_send,
    cmd_variants,
    configure_console_logging,
)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_console_logging(args.verbose)

    try:
        if args.cmd == "variants":
            return cmd_variants(protocol_dir=args.protocol_dir)
        if args.cmd == "scan":
            return cmd_scan(args)
        if args.cmd == "monitor":
            return cmd_monitor(args)
        if args.cmd == "send":
            return cmd_send(args)

        return 2
    except TelemetryError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
