# bletelemetry/protocol/engine.py
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence, Tuple, Union
from typing import Protocol as TypingProtocol

from bletelemetry.core.errors import NotConnectedError, TelemetryError
from bletelemetry.interfaces.command_sink import CommandEvent, CommandSink

from .core import CommandLine, Protocol
from .core.command import encode_line

CommandItem = Union[str, Tuple[str, Sequence[Any]]]


class CommandWriter(TypingProtocol):
    """Minimal write interface for CommandChannel (DeviceLink satisfies it)."""
    async def write(self, data: bytes) -> None: ...


class CommandChannel:
    """
    Outbound command path.

    Writes are serialised: one command on the wire at a time, in call order.
    A batch holds the channel for its whole duration and leaves
    `inter_command_delay_s` between consecutive commands.
    """

    def __init__(
        self,
        proto: Protocol,
        writer: CommandWriter,
        *,
        is_connected: Callable[[], bool],
        inter_command_delay_s: float = 0.1,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.proto = proto
        self.writer = writer
        self.inter_command_delay_s = float(inter_command_delay_s)

        self._is_connected = is_connected
        self._cmd_sink = cmd_sink
        self._log = logger or logging.getLogger(__name__)
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._seq = itertools.count(1)

    # ---------------- Command API ----------------
    async def send_text(self, text: str) -> None:
        """Send a literal command line (delimiter appended)."""
        text = text.strip()
        data = encode_line(self.proto, text)
        name = text.split(":", 1)[0]
        async with self._lock:
            await self._write(name, text, data)

    async def send(self, cmd_name: str, *args: Any) -> None:
        """Send a command defined in commands.yml."""
        line = CommandLine(self.proto, cmd_name, args)
        async with self._lock:
            await self._write(cmd_name, line.text, line.encode())

    async def send_many(self, items: Iterable[CommandItem]) -> int:
        """
        Send a batch of commands sequentially.

        Items are command names or (name, args) pairs. Every line is encoded
        before anything is written, so a bad argument aborts the batch with
        nothing sent. The first write failure aborts the remainder and is
        raised once. Returns the number of commands sent.
        """
        lines = [self._build(item) for item in items]
        sent = 0
        async with self._lock:
            for i, line in enumerate(lines):
                if i > 0 and self.inter_command_delay_s > 0:
                    await self._sleep(self.inter_command_delay_s)
                try:
                    await self._write(line.cmd_name, line.text, line.encode())
                except TelemetryError:
                    if i + 1 < len(lines):
                        self._log.warning(
                            "CMD_BATCH_ABORTED sent=%d skipped=%d",
                            sent,
                            len(lines) - i - 1,
                        )
                    raise
                sent += 1
        return sent

    # ---------------- Internals ----------------
    def _build(self, item: CommandItem) -> CommandLine:
        if isinstance(item, str):
            return CommandLine(self.proto, item)
        name, args = item
        return CommandLine(self.proto, name, args)

    async def _write(self, name: str, text: str, data: bytes) -> None:
        # checked under the lock so a disconnect queued ahead of us wins
        if not self._is_connected():
            self._log.warning("CMD_REJECTED_NOT_CONNECTED cmd=%s", name)
            raise NotConnectedError(
                "Device not connected.",
                hint="Connect to a device before sending commands.",
                details={"command": text},
            )

        request_id = str(next(self._seq))
        self._emit(name, "send", request_id, {"text": text})
        self._log.debug("CMD_SEND cmd=%s len=%d text=%r", name, len(data), text)

        start = time.perf_counter()
        try:
            await self.writer.write(data)
        except TelemetryError as e:
            self._emit(
                name,
                "error",
                request_id,
                {"text": text, "error": e.code, "message": e.message},
            )
            self._log.warning("CMD_SEND_FAILED cmd=%s code=%s", name, e.code)
            raise

        rtt_ms = (time.perf_counter() - start) * 1000.0
        self._emit(name, "ok", request_id, {"text": text, "rtt_ms": rtt_ms})

    def _emit(self, name: str, kind: str, request_id: str, payload: dict) -> None:
        if not self._cmd_sink:
            return
        try:
            self._cmd_sink.on_command(
                CommandEvent(name=name, kind=kind, request_id=request_id, payload=payload)
            )
        except Exception:
            self._log.exception("CMD_SINK_ERROR cmd=%s kind=%s", name, kind)
