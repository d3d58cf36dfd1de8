"""
NATS Client Wrapper for the order engine spine.

Provides:
- Async NATS connection with auto-reconnect
- Plain pub/sub for order status events
- JetStream work-queue stream for execution jobs
"""

from __future__ import annotations

import logging
import time
from typing import Any

import nats
from nats.aio.client import Client as NATSClient
from nats.aio.subscription import Subscription as NATSSubscription
from nats.js import JetStreamContext
from nats.js.api import RetentionPolicy, StreamConfig

from order_engine.spine.schemas import Topics

logger = logging.getLogger(__name__)


class SpineClient:
    """
    Async NATS client wrapper.

    Usage:
        client = SpineClient(url="nats://localhost:4222", name="order_worker")
        await client.connect()
        await client.publish("orders.updates.abc", payload)
        sub = await client.subscribe("orders.updates.>")
        await client.close()
    """

    def __init__(
        self,
        url: str = "nats://localhost:4222",
        name: str = "order_engine",
        max_reconnect_attempts: int = -1,  # infinite
        reconnect_time_wait: float = 2.0,
    ):
        self._url = url
        self._name = name
        self._max_reconnect = max_reconnect_attempts
        self._reconnect_wait = reconnect_time_wait
        self._nc: NATSClient | None = None
        self._js: JetStreamContext | None = None
        self._connected = False
        self._stats = {"msgs_out": 0, "errors": 0, "reconnects": 0}
        self._connect_time: float = 0.0

    @property
    def is_connected(self) -> bool:
        return self._connected and self._nc is not None and self._nc.is_connected

    @property
    def stats(self) -> dict[str, Any]:
        return {
            **self._stats,
            "connected": self.is_connected,
            "uptime_s": time.time() - self._connect_time if self._connect_time else 0,
        }

    @property
    def js(self) -> JetStreamContext | None:
        return self._js

    async def connect(self) -> None:
        """Connect to NATS server with auto-reconnect."""
        if self._nc and self._nc.is_connected:
            return

        async def on_disconnect():
            self._connected = False
            logger.warning(f"[NATS:{self._name}] Disconnected")

        async def on_reconnect():
            self._connected = True
            self._stats["reconnects"] += 1
            logger.info(f"[NATS:{self._name}] Reconnected")

        async def on_error(e: Exception):
            self._stats["errors"] += 1
            logger.error(f"[NATS:{self._name}] Error: {e}")

        async def on_closed():
            self._connected = False
            logger.info(f"[NATS:{self._name}] Connection closed")

        try:
            self._nc = await nats.connect(
                servers=[self._url],
                name=self._name,
                max_reconnect_attempts=self._max_reconnect,
                reconnect_time_wait=self._reconnect_wait,
                disconnected_cb=on_disconnect,
                reconnected_cb=on_reconnect,
                error_cb=on_error,
                closed_cb=on_closed,
            )
            self._connected = True
            self._connect_time = time.time()
            self._js = self._nc.jetstream()

            logger.info(
                f"[NATS:{self._name}] Connected to {self._url} "
                f"(server={self._nc.connected_url})"
            )
        except Exception as e:
            self._stats["errors"] += 1
            logger.error(f"[NATS:{self._name}] Failed to connect: {e}")
            raise

    async def ensure_job_stream(self, duplicate_window: float = 120.0) -> None:
        """
        Create the JetStream work-queue stream for execution jobs.

        Work-queue retention deletes a job once it is acked; the duplicate
        window drops re-published jobs carrying the same Nats-Msg-Id.
        """
        if not self._js:
            raise RuntimeError("Not connected")

        config = StreamConfig(
            name=Topics.ORDER_JOBS_STREAM,
            subjects=[Topics.ORDER_JOBS],
            retention=RetentionPolicy.WORK_QUEUE,
            duplicate_window=duplicate_window,
            storage="file",
        )
        try:
            await self._js.add_stream(config=config)
            logger.info(f"[NATS] Stream {Topics.ORDER_JOBS_STREAM} created")
        except Exception as e:
            # Stream may already exist - try update
            try:
                await self._js.update_stream(config=config)
            except Exception:
                logger.debug(f"[NATS] {Topics.ORDER_JOBS_STREAM} stream already exists: {e}")

    async def publish(self, subject: str, data: bytes) -> None:
        """Publish a message to a subject. Raises if not connected."""
        if not self._nc or not self._nc.is_connected:
            self._stats["errors"] += 1
            raise ConnectionError(f"[NATS:{self._name}] not connected")

        await self._nc.publish(subject, data)
        self._stats["msgs_out"] += 1

    async def subscribe(self, subject: str, pending_msgs_limit: int = 1024) -> NATSSubscription:
        """
        Subscribe without a callback; read via the returned subscription's
        `messages` iterator. The caller owns unsubscribe().
        """
        if not self._nc:
            raise RuntimeError("Not connected")

        sub = await self._nc.subscribe(subject, pending_msgs_limit=pending_msgs_limit)
        logger.debug(f"[NATS:{self._name}] Subscribed to {subject}")
        return sub

    async def close(self) -> None:
        """Drain and close the connection."""
        if self._nc:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.debug(f"[NATS:{self._name}] Drain failed: {e}")
            self._nc = None
            self._js = None

        self._connected = False
        logger.info(f"[NATS:{self._name}] Closed")
