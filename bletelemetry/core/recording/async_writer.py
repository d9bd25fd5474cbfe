# bletelemetry/core/recording/async_writer.py
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from queue import Empty, Queue
from typing import Any, Callable, List, Optional

WriteFunc = Callable[[Path, List[Any]], None]


class AsyncWriter:
    """
    Threaded, batched file writer.

    Producers (the event loop) only enqueue; a daemon thread hands batches to
    `write_func(path, batch)` every `flush_interval` seconds and on close().
    """

    def __init__(
        self,
        path: Path,
        write_func: WriteFunc,
        flush_interval: float = 0.5,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._path = Path(path)
        self._write_func = write_func
        self._flush_interval = float(flush_interval)

        self._log = logger or logging.getLogger(__name__)

        self._queue: Queue[Any] = Queue()
        self._stop_event = threading.Event()
        self._idle = threading.Condition()
        self._in_flight = 0

        self._thread = threading.Thread(target=self._worker, name=f"writer:{self._path.name}", daemon=True)
        self._thread.start()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()

    # ---------------- Public API ----------------
    def write(self, item: Any) -> None:
        """Queue an item for writing (no-op after close())."""
        if self._stop_event.is_set():
            return
        with self._idle:
            self._in_flight += 1
        self._queue.put(item)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Block until everything queued so far reached write_func."""
        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def close(self) -> None:
        """Flush remaining items and stop the writer thread."""
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._thread.join(timeout=None)

    # ---------------- Internal ----------------
    def _worker(self) -> None:
        batch: List[Any] = []
        last_flush = time.monotonic()

        while not self._stop_event.is_set() or not self._queue.empty():
            try:
                batch.append(self._queue.get(timeout=0.05))
            except Empty:
                pass

            now = time.monotonic()
            if batch and (now - last_flush >= self._flush_interval or self._stop_event.is_set()):
                self._flush_safe(batch)
                batch = []
                last_flush = now

        if batch:
            self._flush_safe(batch)

    def _flush_safe(self, batch: List[Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._write_func(self._path, batch)
        except Exception:
            # drop the batch, keep the thread alive
            self._log.exception("ASYNC_WRITER_FLUSH_FAILED path=%s batch_len=%d", self._path, len(batch))
        finally:
            with self._idle:
                self._in_flight -= len(batch)
                self._idle.notify_all()
