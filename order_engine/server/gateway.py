"""
Subscription Gateway - per-connection order status stream.

One serve() call per websocket client, bound to one order id at connect
time. The connection subscribes to the event bus, forwards only events
for its order, and releases the subscription on every exit path (client
close, abnormal socket loss, send failure, server shutdown).

Topic modes:
  broadcast  - every connection subscribes to orders.updates.> and drops
               events for other orders (O(connections x events) filtering)
  per_order  - every connection subscribes to orders.updates.{order_id};
               the order id check still runs on each event
"""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import WebSocket

from order_engine.core.events import OrderEvent
from order_engine.spine.event_bus import EventBus, Subscription
from order_engine.spine.schemas import Topics, decode

logger = logging.getLogger(__name__)

TOPIC_MODES = ("broadcast", "per_order")


class SubscriptionGateway:
    """Bridges event bus subscriptions to websocket clients."""

    def __init__(self, bus: EventBus, topic_mode: str = "broadcast"):
        if topic_mode not in TOPIC_MODES:
            raise ValueError(f"Unknown topic mode {topic_mode!r}, expected one of {TOPIC_MODES}")
        self._bus = bus
        self._topic_mode = topic_mode
        self._active_connections = 0
        self._stats = {"connections": 0, "forwarded": 0, "filtered": 0, "malformed": 0}

    @property
    def active_connections(self) -> int:
        return self._active_connections

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, "active_connections": self._active_connections}

    def topic_for(self, order_id: str) -> str:
        if self._topic_mode == "per_order":
            return Topics.order_updates(order_id)
        return Topics.ORDER_UPDATES_ALL

    async def serve(self, websocket: WebSocket, order_id: str) -> None:
        """Stream events for order_id to the socket until either side goes away."""
        await websocket.accept()
        self._active_connections += 1
        self._stats["connections"] += 1
        logger.info(
            f"[GATEWAY] Client connected for order {order_id}. "
            f"Total: {self._active_connections}"
        )

        try:
            async with self._bus.subscription(self.topic_for(order_id)) as sub:
                forward = asyncio.create_task(self._forward(websocket, sub, order_id))
                watch = asyncio.create_task(self._watch_disconnect(websocket))
                try:
                    await asyncio.wait({forward, watch}, return_when=asyncio.FIRST_COMPLETED)
                finally:
                    for task in (forward, watch):
                        task.cancel()
                    await asyncio.gather(forward, watch, return_exceptions=True)

                if watch.cancelled():
                    # Stream ended from our side; the client is still attached
                    await self._close_quietly(websocket)
        except Exception as e:
            logger.error(f"[GATEWAY] Stream for order {order_id} aborted: {e}")
            await self._close_quietly(websocket, code=1011)
        finally:
            self._active_connections -= 1
            logger.info(
                f"[GATEWAY] Client disconnected for order {order_id}. "
                f"Total: {self._active_connections}"
            )

    async def _forward(self, websocket: WebSocket, sub: Subscription, order_id: str) -> None:
        async for payload in sub:
            event = self._parse(payload)
            if event is None:
                continue
            if event.order_id != order_id:
                self._stats["filtered"] += 1
                continue

            try:
                await websocket.send_text(json.dumps(event.to_wire()))
            except Exception as e:
                logger.debug(f"[GATEWAY] Send to client for order {order_id} failed: {e}")
                return
            self._stats["forwarded"] += 1

    async def _watch_disconnect(self, websocket: WebSocket) -> None:
        """Consume client frames until the disconnect message arrives."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

    def _parse(self, payload: bytes) -> OrderEvent | None:
        try:
            return OrderEvent.from_wire(decode(payload))
        except Exception as e:
            self._stats["malformed"] += 1
            logger.warning(f"[GATEWAY] Dropping malformed event payload: {e}")
            return None

    async def _close_quietly(self, websocket: WebSocket, code: int = 1000) -> None:
        try:
            await websocket.close(code=code)
        except Exception as e:
            logger.debug(f"[GATEWAY] Socket already closed: {e}")
