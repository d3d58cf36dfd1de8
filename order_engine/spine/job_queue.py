"""
Job Queue - at-least-once delivery of order execution jobs.

A Delivery must be settled exactly one way:
- ack():        job done, never delivered again
- retry(delay): job failed, deliver again after delay (attempt + 1)
- reject():     job is dead, park it for operators

Attempt limits and backoff are decided by the consumer (WorkerPool); the
queue only carries the attempt counter.

Implementations:
- InMemoryJobQueue: single process (tests, embedded mode)
- NatsJobQueue: JetStream work-queue stream with a durable pull consumer
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod

import nats.errors
from nats.js.api import ConsumerConfig

from order_engine.spine.nats_client import SpineClient
from order_engine.spine.schemas import JobMsg, Topics

logger = logging.getLogger(__name__)


class Delivery(ABC):
    """One delivery of a job to a consumer."""

    def __init__(self, job: JobMsg, attempt: int):
        self.job = job
        self.attempt = attempt
        self._settled = False

    @property
    def settled(self) -> bool:
        return self._settled

    def _settle(self, action: str) -> bool:
        if self._settled:
            logger.warning(
                f"[QUEUE] Job {self.job.job_id} already settled, ignoring {action}"
            )
            return False
        self._settled = True
        return True

    async def ack(self) -> None:
        if self._settle("ack"):
            await self._ack()

    async def retry(self, delay: float = 0.0) -> None:
        if self._settle("retry"):
            await self._retry(delay)

    async def reject(self) -> None:
        if self._settle("reject"):
            await self._reject()

    @abstractmethod
    async def _ack(self) -> None:
        ...

    @abstractmethod
    async def _retry(self, delay: float) -> None:
        ...

    @abstractmethod
    async def _reject(self) -> None:
        ...


class JobQueue(ABC):
    """Job intake contract."""

    async def start(self) -> None:
        """Open the underlying transport, if any."""

    async def close(self) -> None:
        """Close the underlying transport, if any."""

    @abstractmethod
    async def enqueue(self, order_id: str) -> JobMsg:
        ...

    @abstractmethod
    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        """Wait up to timeout for the next delivery."""
        ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class _MemoryDelivery(Delivery):
    def __init__(self, queue: InMemoryJobQueue, job: JobMsg, attempt: int):
        super().__init__(job, attempt)
        self._queue = queue

    async def _ack(self) -> None:
        self._queue._on_settled()
        self._queue.completed.append(self.job)

    async def _retry(self, delay: float) -> None:
        self._queue._on_settled()
        self._queue._schedule(self.job, self.attempt + 1, delay)

    async def _reject(self) -> None:
        self._queue._on_settled()
        self._queue.dead_letters.append(self.job)


class InMemoryJobQueue(JobQueue):
    """Process-local queue with retry timers and a dead-letter list."""

    def __init__(self):
        self._ready: asyncio.Queue = asyncio.Queue()
        self._timers: set[asyncio.Task] = set()
        self._in_flight = 0
        self.completed: list[JobMsg] = []
        self.dead_letters: list[JobMsg] = []

    @property
    def is_idle(self) -> bool:
        """True when nothing is queued, scheduled or being processed."""
        return self._ready.empty() and not self._timers and self._in_flight == 0

    async def enqueue(self, order_id: str) -> JobMsg:
        job = JobMsg(order_id=order_id)
        self._ready.put_nowait((job, 1))
        logger.debug(f"[QUEUE] Enqueued job {job.job_id} for order {order_id}")
        return job

    async def redeliver(self, job: JobMsg, attempt: int = 1) -> None:
        """Deliver a job again, as a broker would after a lost ack."""
        self._ready.put_nowait((job, attempt))

    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        try:
            job, attempt = await asyncio.wait_for(self._ready.get(), timeout)
        except asyncio.TimeoutError:
            return None
        self._in_flight += 1
        return _MemoryDelivery(self, job, attempt)

    async def wait_idle(self, poll_interval: float = 0.01) -> None:
        """Block until every job has been settled for good."""
        # Two consecutive idle polls: a get() that completed inside
        # wait_for has not bumped _in_flight until the receiver resumes.
        idle_polls = 0
        while idle_polls < 2:
            await asyncio.sleep(poll_interval)
            idle_polls = idle_polls + 1 if self.is_idle else 0

    async def close(self) -> None:
        for task in self._timers:
            task.cancel()
        self._timers.clear()

    def _on_settled(self) -> None:
        self._in_flight -= 1

    def _schedule(self, job: JobMsg, attempt: int, delay: float) -> None:
        if delay <= 0:
            self._ready.put_nowait((job, attempt))
            return

        async def _later() -> None:
            await asyncio.sleep(delay)
            self._ready.put_nowait((job, attempt))

        task = asyncio.create_task(_later())
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)


# ---------------------------------------------------------------------------
# NATS JetStream implementation
# ---------------------------------------------------------------------------

class _NatsDelivery(Delivery):
    def __init__(self, msg, job: JobMsg, attempt: int):
        super().__init__(job, attempt)
        self._msg = msg

    async def _ack(self) -> None:
        await self._msg.ack()

    async def _retry(self, delay: float) -> None:
        await self._msg.nak(delay=delay if delay > 0 else None)

    async def _reject(self) -> None:
        await self._msg.term()


class NatsJobQueue(JobQueue):
    """
    JetStream-backed job queue.

    Jobs are published with a Nats-Msg-Id header equal to the job id, so a
    publisher retry inside the stream's duplicate window is dropped by the
    server. The durable pull consumer is shared by every worker process.
    """

    def __init__(
        self,
        spine: SpineClient,
        durable: str = "order-workers",
        ack_wait_sec: float = 60.0,
        max_deliver: int = -1,
        owns_connection: bool = False,
    ):
        self._spine = spine
        self._durable = durable
        self._ack_wait = ack_wait_sec
        self._max_deliver = max_deliver
        self._owns_connection = owns_connection
        self._psub = None

    async def start(self) -> None:
        await self._spine.connect()
        await self._spine.ensure_job_stream()

    async def _pull_subscription(self):
        if self._psub is None:
            self._psub = await self._spine.js.pull_subscribe(
                Topics.ORDER_JOBS,
                durable=self._durable,
                config=ConsumerConfig(
                    ack_wait=self._ack_wait,
                    max_deliver=self._max_deliver,
                ),
            )
        return self._psub

    async def enqueue(self, order_id: str) -> JobMsg:
        if not self._spine.js:
            raise RuntimeError("Not connected")

        job = JobMsg(order_id=order_id)
        await self._spine.js.publish(
            Topics.ORDER_JOBS,
            job.encode(),
            headers={"Nats-Msg-Id": job.job_id},
        )
        logger.debug(f"[QUEUE] Enqueued job {job.job_id} for order {order_id}")
        return job

    async def receive(self, timeout: float = 1.0) -> Delivery | None:
        psub = await self._pull_subscription()
        try:
            msgs = await psub.fetch(1, timeout=timeout)
        except (nats.errors.TimeoutError, asyncio.TimeoutError):
            return None

        msg = msgs[0]
        try:
            job = JobMsg.decode(msg.data)
        except Exception as e:
            logger.error(f"[QUEUE] Undecodable job payload, terminating: {e}")
            await msg.term()
            return None

        return _NatsDelivery(msg, job, attempt=msg.metadata.num_delivered)

    async def close(self) -> None:
        if self._psub is not None:
            try:
                await self._psub.unsubscribe()
            except Exception as e:
                logger.debug(f"[QUEUE] Pull subscription already closed: {e}")
            self._psub = None
        if self._owns_connection:
            await self._spine.close()
