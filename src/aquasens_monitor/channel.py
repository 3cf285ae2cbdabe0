from __future__ import annotations
import asyncio
from typing import AsyncIterator, Optional
from .reading import SensorReading

_CLOSED = object()


class ReadingQueue:
    """Bounded hand-off between a reading source and one consumer.

    `put` has the observer signature, so a queue can be passed anywhere a
    reading callback is expected. When full the oldest reading is dropped;
    after `close()` puts are ignored and iteration ends once drained.
    """
    def __init__(self, maxsize: int = 16):
        if maxsize < 1:
            raise ValueError(f"maxsize must be at least 1, got {maxsize}")
        self._q: "asyncio.Queue[object]" = asyncio.Queue(maxsize=maxsize + 1)
        self.maxsize = maxsize
        self.closed = False
        self.dropped = 0

    def put(self, reading: SensorReading):
        if self.closed:
            return
        if self._q.qsize() >= self.maxsize:
            self._q.get_nowait()
            self.dropped += 1
        self._q.put_nowait(reading)

    def close(self):
        if self.closed:
            return
        self.closed = True
        # Spare slot keeps room for the sentinel
        self._q.put_nowait(_CLOSED)

    async def get(self) -> Optional[SensorReading]:
        """Next reading, or None once the queue is closed and drained."""
        item = await self._q.get()
        if item is _CLOSED:
            # Leave the sentinel for any other waiter
            self._q.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[SensorReading]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[SensorReading]:
        while True:
            r = await self.get()
            if r is None:
                return
            yield r
