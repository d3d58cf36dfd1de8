"""
Event Bus - broadcast channel for order status events.

Contract:
- publish(topic, payload) never blocks on subscribers (fire-and-forget)
- subscribe(topic) returns a Subscription handle: an async iterator of
  payloads that must be released with unsubscribe()
- subscription(topic) is the scoped form; the handle is released on every
  exit path, including cancellation
- no persistence or replay: a subscriber only sees events published while
  it is registered

Implementations:
- InMemoryEventBus: single process (tests, embedded mode)
- NatsEventBus: core NATS pub/sub via SpineClient
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from order_engine.spine.nats_client import SpineClient
from order_engine.spine.schemas import subject_matches

logger = logging.getLogger(__name__)


class Subscription(ABC):
    """Handle for one registered interest in a topic."""

    def __init__(self, topic: str):
        self.topic = topic
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    async def _next(self) -> bytes:
        """Wait for the next payload; raise StopAsyncIteration once released."""
        ...

    @abstractmethod
    async def _release(self) -> None:
        """Deregister from the underlying transport."""
        ...

    async def unsubscribe(self) -> None:
        """Release the handle. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._release()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        return await self._next()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unsubscribe()


class EventBus(ABC):
    """Topic-keyed broadcast channel."""

    @property
    def is_connected(self) -> bool:
        return True

    async def start(self) -> None:
        """Open the underlying transport, if any."""

    async def close(self) -> None:
        """Close the underlying transport, if any."""

    @abstractmethod
    async def publish(self, topic: str, payload: bytes) -> None:
        ...

    @abstractmethod
    async def subscribe(self, topic: str) -> Subscription:
        ...

    @asynccontextmanager
    async def subscription(self, topic: str) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of the block."""
        sub = await self.subscribe(topic)
        try:
            yield sub
        finally:
            await sub.unsubscribe()


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

_CLOSED = object()


class _MemorySubscription(Subscription):
    def __init__(self, bus: InMemoryEventBus, topic: str, max_pending: int):
        super().__init__(topic)
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)

    def _put_dropping_oldest(self, item: Any) -> bool:
        dropped = False
        while self._queue.full():
            self._queue.get_nowait()
            dropped = True
        self._queue.put_nowait(item)
        return dropped

    def offer(self, payload: bytes) -> None:
        """Enqueue without waiting; the oldest payload gives way when full."""
        if self._closed:
            return
        if self._put_dropping_oldest(payload):
            self._bus._stats["dropped"] += 1

    async def _next(self) -> bytes:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def _release(self) -> None:
        self._bus._remove(self)
        # Wake a reader blocked in _next()
        self._put_dropping_oldest(_CLOSED)


class InMemoryEventBus(EventBus):
    """Process-local bus with NATS subject semantics (`*`, `>`)."""

    def __init__(self, max_pending: int = 1024):
        self._max_pending = max_pending
        self._subscriptions: list[_MemorySubscription] = []
        self._stats = {"published": 0, "delivered": 0, "dropped": 0}

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, "subscribers": self.subscriber_count}

    async def publish(self, topic: str, payload: bytes) -> None:
        self._stats["published"] += 1
        for sub in list(self._subscriptions):
            if subject_matches(sub.topic, topic):
                sub.offer(payload)
                self._stats["delivered"] += 1

    async def subscribe(self, topic: str) -> Subscription:
        sub = _MemorySubscription(self, topic, self._max_pending)
        self._subscriptions.append(sub)
        logger.debug(f"[BUS] Subscribed to {topic} ({self.subscriber_count} total)")
        return sub

    def _remove(self, sub: _MemorySubscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
        logger.debug(f"[BUS] Unsubscribed from {sub.topic} ({self.subscriber_count} total)")


# ---------------------------------------------------------------------------
# NATS implementation
# ---------------------------------------------------------------------------

class _NatsSubscription(Subscription):
    def __init__(self, topic: str, nats_sub: Any):
        super().__init__(topic)
        self._sub = nats_sub
        self._messages = nats_sub.messages

    async def _next(self) -> bytes:
        msg = await self._messages.__anext__()
        return msg.data

    async def _release(self) -> None:
        try:
            await self._sub.unsubscribe()
        except Exception as e:
            # Connection already closed or draining; nothing left to release
            logger.debug(f"[BUS] Unsubscribe from {self.topic} failed: {e}")


class NatsEventBus(EventBus):
    """Event bus over core NATS (no JetStream: events are not replayed)."""

    def __init__(self, spine: SpineClient, owns_connection: bool = True):
        self._spine = spine
        self._owns_connection = owns_connection

    @property
    def is_connected(self) -> bool:
        return self._spine.is_connected

    async def start(self) -> None:
        await self._spine.connect()

    async def close(self) -> None:
        if self._owns_connection:
            await self._spine.close()

    async def publish(self, topic: str, payload: bytes) -> None:
        await self._spine.publish(topic, payload)

    async def subscribe(self, topic: str) -> Subscription:
        nats_sub = await self._spine.subscribe(topic)
        return _NatsSubscription(topic, nats_sub)
