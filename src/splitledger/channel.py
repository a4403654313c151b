from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """Single-consumer async queue that can be iterated until closed.

    Subscriptions are registered when the channel is created, so nothing
    published between subscribing and the first ``__anext__`` is lost.
    """

    def __init__(self, on_close: Optional[Callable[["Channel[T]"], Awaitable[None] | None]] = None) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, value: T) -> None:
        if not self._closed:
            self._queue.put_nowait(value)

    def __aiter__(self) -> "Channel[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value  # type: ignore[return-value]

    async def get(self, timeout: Optional[float] = None) -> T:
        return await asyncio.wait_for(self.__anext__(), timeout)

    def pending(self) -> int:
        return self._queue.qsize()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            result = self._on_close(self)
            if result is not None:
                await result
