"""Event channel between providers (producers) and the dispatcher (consumer)."""

from __future__ import annotations

import asyncio
from typing import List

from .models import StreamStatus


class StreamEventQueue:
    """FIFO of ``StreamStatus`` events.

    Providers only ``publish``; exactly one dispatcher task drains it, so the
    arrival order per provider is kept.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[StreamStatus] = asyncio.Queue(maxsize=maxsize)
        self.published = 0

    def publish(self, status: StreamStatus) -> None:
        self._queue.put_nowait(status)
        self.published += 1

    async def get(self) -> StreamStatus:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def drain(self) -> List[StreamStatus]:
        """Take everything that is queued right now (used by tests and on shutdown)."""
        out: List[StreamStatus] = []
        while True:
            try:
                out.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return out
            self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()
