"""Queue-per-subscriber event fan-out used by every mirror stream."""

import asyncio
import logging
from typing import Any, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_END = object()


class Subscription(Generic[T]):
    """One subscriber's view of an :class:`EventBus`.

    Iterate it with ``async for``; iteration never ends on its own unless the
    publisher finishes the stream.  ``close()`` stops delivery immediately and
    discards anything still queued.
    """

    def __init__(self, bus: "EventBus", accept: Callable[[Any], bool] | None = None):
        self._bus = bus
        self._accept = accept
        # Unbounded: every event must reach every subscriber exactly once.
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _offer(self, item: Any) -> None:
        if self._closed:
            return
        if self._accept is not None and not self._accept(item):
            return
        self._queue.put_nowait(item)

    def _finish(self) -> None:
        if not self._closed:
            self._queue.put_nowait(_END)

    def close(self) -> None:
        """Stop delivery and drop queued events."""
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        # Wake a consumer blocked in __anext__
        self._queue.put_nowait(_END)

    async def aclose(self) -> None:
        self.close()

    def __aiter__(self) -> "Subscription[T]":
        return self

    async def __anext__(self) -> T:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END:
            if not self._closed:
                self._closed = True
                self._bus.unsubscribe(self)
            raise StopAsyncIteration
        return item

    async def next(self, timeout: float | None = None) -> T:
        """Return the next event, waiting at most *timeout* seconds."""
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout)

    async def __aenter__(self) -> "Subscription[T]":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()


class EventBus(Generic[T]):
    """Simple pub/sub using an asyncio.Queue per subscriber."""

    def __init__(self, name: str = "events", on_empty: Callable[["EventBus[T]"], None] | None = None):
        self._name = name
        self._on_empty = on_empty
        self._subscribers: list[Subscription[T]] = []

    def subscribe(self, accept: Callable[[T], bool] | None = None) -> Subscription[T]:
        """Add a subscriber; it sees only events emitted from now on."""
        sub: Subscription[T] = Subscription(self, accept)
        self._subscribers.append(sub)
        logger.debug("%s: subscriber added (%d total)", self._name, len(self._subscribers))
        return sub

    def unsubscribe(self, sub: Subscription[T]) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            return
        logger.debug("%s: subscriber removed (%d remaining)", self._name, len(self._subscribers))
        if not self._subscribers and self._on_empty is not None:
            self._on_empty(self)

    def emit(self, item: T) -> None:
        """Push an event to all subscribers, in subscription order."""
        for sub in list(self._subscribers):
            sub._offer(item)

    def finish(self) -> None:
        """End every subscription's iteration after its queued events."""
        for sub in list(self._subscribers):
            sub._finish()
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
