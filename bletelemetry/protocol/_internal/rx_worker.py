# bletelemetry/protocol/_internal/rx_worker.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

E = TypeVar("E")


class RxWorker(Generic[E]):
    """Task that drains an event queue in arrival order and feeds a handler."""

    def __init__(
        self,
        queue: "asyncio.Queue[E]",
        handler: Callable[[E], Awaitable[Any]],
        *,
        logger: Optional[logging.Logger] = None,
        name: str = "rx-worker",
    ):
        self.queue = queue
        self.handler = handler
        self.name = name
        self._log = logger or logging.getLogger(__name__)
        self._task: Optional[asyncio.Task] = None

    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_alive():
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self.handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                self._log.exception("RX_WORKER_EXCEPTION event=%s", type(event).__name__)
            finally:
                self.queue.task_done()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
