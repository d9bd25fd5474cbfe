from __future__ import annotations

import codecs
import logging
from typing import List, Optional


class LineReassembler:
    """
    Accumulates notification chunks and yields complete delimited records.

    A trailing fragment without delimiter is kept for the next feed().
    Whitespace-only records are dropped; surviving records are stripped.
    """

    def __init__(
        self,
        delimiter: str = "\n",
        encoding: str = "utf-8",
        logger: Optional[logging.Logger] = None,
    ):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self.encoding = encoding
        self.buffer = ""
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._log = logger or logging.getLogger(__name__)

    # ---------------- Public API ----------------
    def feed(self, chunk: bytes) -> List[str]:
        """Append raw bytes and return every record completed by them (FIFO)."""
        self.buffer += self._decoder.decode(bytes(chunk))

        if self.delimiter not in self.buffer:
            self._log.debug(
                "Reassembler fed %d bytes, no delimiter, pending_len=%d",
                len(chunk),
                len(self.buffer),
            )
            return []

        *complete, self.buffer = self.buffer.split(self.delimiter)

        records = [r.strip() for r in complete]
        records = [r for r in records if r]

        self._log.debug(
            "Reassembler fed %d bytes, records=%d pending_len=%d",
            len(chunk),
            len(records),
            len(self.buffer),
        )
        return records

    @property
    def pending(self) -> str:
        """Trailing fragment waiting for its delimiter."""
        return self.buffer

    def reset(self) -> None:
        self.buffer = ""
        self._decoder.reset()
