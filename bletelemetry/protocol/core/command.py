from __future__ import annotations

from typing import Any, Sequence

from .defs import Protocol


def format_arg(value: Any) -> str:
    """Render one command argument the way the firmware parses it."""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    text = str(value)
    if "," in text or "\n" in text or "\r" in text:
        raise ValueError(f"Command argument contains a separator: {text!r}")
    return text


class CommandLine:
    """Host -> device command line: NAME or NAME:arg1,arg2 plus delimiter."""

    def __init__(self, proto: Protocol, cmd_name: str, args: Sequence[Any] = ()):
        cmd_def = proto.get_command_def(cmd_name)
        expected = list(cmd_def.get("args") or [])
        args = list(args)

        if len(args) != len(expected):
            raise ValueError(
                f"Command {cmd_name} expects {len(expected)} argument(s) {expected}, got {len(args)}"
            )

        self.proto = proto
        self.cmd_name = cmd_name
        self.args = tuple(args)

    @property
    def text(self) -> str:
        if not self.args:
            return self.cmd_name
        return f"{self.cmd_name}:{','.join(format_arg(a) for a in self.args)}"

    def encode(self) -> bytes:
        return encode_line(self.proto, self.text)


def encode_line(proto: Protocol, text: str) -> bytes:
    """Append the record delimiter and encode for the wire."""
    if proto.delimiter in text:
        raise ValueError(f"Command text must not contain the delimiter: {text!r}")
    return (text + proto.delimiter).encode(proto.encoding)
