"""Bounded single-producer/single-consumer channels between pipeline stages."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Generic, TypeVar

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(RuntimeError):
    """send() was called after close()."""


class Channel(Generic[T]):
    """An asyncio.Queue with close semantics.

    With the default single slot, a producer blocks until the consumer has
    taken the previous item, so a slow consumer slows the producer down
    instead of growing a buffer.

    Usage:
        async def produce(out: Channel[int]) -> None:
            try:
                for i in range(3):
                    await out.send(i)
            finally:
                out.close()

        async for item in channel:
            ...
    """

    def __init__(self, maxsize: int = 1):
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._exhausted = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, item: T) -> None:
        if self._closed:
            raise ChannelClosed("send on closed channel")
        await self._queue.put(item)

    def close(self) -> None:
        """Mark the end of the sequence.

        Never blocks: if the queue is full the consumer notices the end once it
        has taken the pending items. Closing twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    async def receive(self) -> T:
        """Return the next item.

        Raises:
            StopAsyncIteration: Once the channel is closed and empty. Every
                later call raises again; the sequence cannot be resumed.
        """
        if self._exhausted or (self._closed and self._queue.empty()):
            self._exhausted = True
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._exhausted = True
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        return await self.receive()

    async def drain(self) -> int:
        """Consume and discard everything until the producer closes.

        Returns:
            Number of discarded items
        """
        discarded = 0
        async for _ in self:
            discarded += 1
        return discarded


def is_cancelling() -> bool:
    """True inside a task that is being cancelled.

    A cancelled pipeline tears down all of its stages at once, so nothing is
    left to drain; producers that never started would never close their
    channels either.
    """
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0
