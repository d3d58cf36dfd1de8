"""
Worker Pool - concurrent job consumers around one ExecutionWorker.

Each consumer task pulls a delivery, runs the worker and settles the
delivery according to how process() finished:

    returned                 -> ack
    RetryableJobError        -> retry with exponential backoff, reject after max_attempts
    OrderNotFoundError       -> reject (malformed job)
    InvalidTransitionError   -> reject (internal fault)
    anything else            -> treated like a retryable failure
"""

from __future__ import annotations

import asyncio
import logging

from order_engine.core.config import WorkerConfig
from order_engine.core.order_fsm import InvalidTransitionError
from order_engine.execution.base import RetryableJobError
from order_engine.execution.worker import ExecutionWorker
from order_engine.persistence.order_store import OrderNotFoundError
from order_engine.spine.job_queue import Delivery, JobQueue

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, config: WorkerConfig) -> float:
    """Delay before redelivering after the given (1-based) failed attempt."""
    delay = config.backoff_base_sec * (2 ** max(attempt - 1, 0))
    return min(delay, config.backoff_max_sec)


class WorkerPool:
    """Runs `concurrency` consumers until stopped."""

    def __init__(self, queue: JobQueue, worker: ExecutionWorker, config: WorkerConfig | None = None):
        self._queue = queue
        self._worker = worker
        self._config = config or WorkerConfig()
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stats = {"completed": 0, "retried": 0, "dead_lettered": 0}

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict[str, int]:
        return {**self._stats, **{f"worker_{k}": v for k, v in self._worker.stats.items()}}

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"order-consumer-{i}")
            for i in range(self._config.concurrency)
        ]
        logger.info(f"[POOL] Started {self._config.concurrency} consumers")

    async def stop(self) -> None:
        """Stop consuming. In-flight jobs are cancelled and left unsettled for redelivery."""
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("[POOL] Stopped")

    async def _consume(self, index: int) -> None:
        while self._running:
            try:
                delivery = await self._queue.receive(timeout=self._config.receive_timeout_sec)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[POOL] Consumer {index} receive failed: {e}")
                await asyncio.sleep(self._config.backoff_base_sec)
                continue

            if delivery is None:
                continue

            try:
                await self.handle(delivery)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Settling failed; the broker redelivers once the ack deadline passes
                logger.error(f"[POOL] Consumer {index} could not settle job {delivery.job.job_id}: {e}")

    async def handle(self, delivery: Delivery) -> None:
        """Run one delivery through the worker and settle it."""
        job = delivery.job
        logger.info(
            f"[POOL] Job {job.job_id} for order {job.order_id} (attempt {delivery.attempt})"
        )
        try:
            await self._worker.process(job.order_id)
        except RetryableJobError as e:
            await self._retry_or_dead_letter(delivery, e.reason)
        except OrderNotFoundError as e:
            logger.error(f"[POOL] Job {job.job_id} rejected: {e}")
            await self._dead_letter(delivery)
        except InvalidTransitionError:
            logger.exception(f"[POOL] Job {job.job_id} hit an invalid transition")
            await self._dead_letter(delivery)
        except Exception as e:
            logger.exception(f"[POOL] Job {job.job_id} raised unexpectedly")
            await self._retry_or_dead_letter(delivery, str(e) or type(e).__name__)
        else:
            self._stats["completed"] += 1
            await delivery.ack()
            logger.info(f"[POOL] Job {job.job_id} completed")

    async def _retry_or_dead_letter(self, delivery: Delivery, reason: str) -> None:
        job = delivery.job
        if delivery.attempt >= self._config.max_attempts:
            logger.error(
                f"[POOL] Job {job.job_id} for order {job.order_id} exhausted "
                f"{self._config.max_attempts} attempts: {reason}"
            )
            await self._dead_letter(delivery)
            return

        delay = backoff_delay(delivery.attempt, self._config)
        self._stats["retried"] += 1
        logger.info(f"[POOL] Job {job.job_id} failed: {reason}; retrying in {delay:.1f}s")
        await delivery.retry(delay)

    async def _dead_letter(self, delivery: Delivery) -> None:
        self._stats["dead_lettered"] += 1
        await delivery.reject()
