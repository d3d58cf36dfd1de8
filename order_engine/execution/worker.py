"""
Execution Worker - drives one order from PENDING to a terminal status.

process(order_id) is invoked once per delivered job. Delivery is
at-least-once, so the worker is idempotent:
- terminal orders are skipped without writes or publishes
- every store write is a compare-and-set on the status the worker last
  wrote, so a racing duplicate execution loses cleanly instead of
  appending a second terminal entry

Outcome contract (what the delivery layer sees):
- returns normally         -> job done (CONFIRMED, slippage/rejected FAILED, or no-op)
- OrderNotFoundError       -> fatal for this job, do not retry
- RetryableJobError        -> re-enqueue (transient fault, or order in flight)
- InvalidTransitionError   -> internal fault, do not retry

Store writes are the source of truth; each one is followed by a
best-effort publish on the event bus that never fails the step.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from order_engine.core.config import WorkerConfig
from order_engine.core.events import OrderEvent
from order_engine.core.order_fsm import InvalidTransitionError, Outcome, advance
from order_engine.core.types import ExecutionLogEntry, OrderStatus
from order_engine.execution.base import (
    FAULT_POLICY,
    DexRouter,
    OrderInFlightError,
    RetryableJobError,
    classify_fault,
    describe_fault,
)
from order_engine.persistence.order_store import (
    OrderNotFoundError,
    OrderStore,
    StaleOrderStateError,
)
from order_engine.spine.event_bus import EventBus
from order_engine.spine.schemas import Topics, encode

logger = logging.getLogger(__name__)


class ExecutionWorker:
    """Runs the order state machine against the router, store and bus."""

    def __init__(
        self,
        store: OrderStore,
        router: DexRouter,
        bus: EventBus,
        config: WorkerConfig | None = None,
        topic_for: Callable[[str], str] = Topics.order_updates,
    ):
        self._store = store
        self._router = router
        self._bus = bus
        self._config = config or WorkerConfig()
        self._topic_for = topic_for

        self._stats = {
            "processed": 0,
            "confirmed": 0,
            "failed": 0,
            "retryable": 0,
            "skipped": 0,
            "superseded": 0,
            "publish_errors": 0,
        }

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def process(self, order_id: str) -> None:
        """Execute one job for order_id. See module docstring for outcomes."""
        self._stats["processed"] += 1

        order = await asyncio.to_thread(self._store.get, order_id)
        if order is None:
            logger.error(f"[WORKER] Order {order_id} not found")
            raise OrderNotFoundError(order_id)

        if order.status.is_terminal:
            logger.info(f"[WORKER] Order {order_id} already {order.status.value}, skipping")
            self._stats["skipped"] += 1
            return

        if order.status is not OrderStatus.PENDING:
            logger.warning(
                f"[WORKER] Order {order_id} is {order.status.value}; "
                f"another execution owns it"
            )
            raise OrderInFlightError(order_id, order.status)

        logger.info(f"[WORKER] Executing order {order_id} amount={order.amount}")
        status = order.status
        try:
            status = await self._apply(order_id, status, Outcome.start())
            quote = await self._router.get_quote(order.amount)

            status = await self._apply(order_id, status, Outcome.quoted(quote))
            await asyncio.sleep(self._config.build_delay_sec)

            status = await self._apply(order_id, status, Outcome.built())
            result = await self._router.execute_swap(quote)

            await self._apply(
                order_id,
                status,
                Outcome.executed(result),
                fields={"tx_hash": result.tx_hash, "final_price": result.final_price},
                tx_hash=result.tx_hash,
            )
        except StaleOrderStateError as e:
            self._superseded(order_id, e)
            return
        except (InvalidTransitionError, OrderNotFoundError):
            raise
        except Exception as exc:
            await self._fail(order_id, status, exc)
            return

        self._stats["confirmed"] += 1
        logger.info(f"[WORKER] Order {order_id} confirmed")

    async def _fail(self, order_id: str, status: OrderStatus, exc: Exception) -> None:
        """Record FAILED for a classified fault; raise if the job should retry."""
        reason = describe_fault(exc)
        if status is OrderStatus.PENDING:
            # ROUTING write never landed; the order is untouched
            self._stats["retryable"] += 1
            logger.warning(f"[WORKER] Order {order_id} could not start: {reason}; requesting retry")
            raise RetryableJobError(order_id, reason) from exc

        kind = classify_fault(exc)
        policy = FAULT_POLICY[kind]

        try:
            await self._apply(order_id, status, policy.to_outcome(reason))
        except StaleOrderStateError as e:
            self._superseded(order_id, e)
            return

        self._stats["failed"] += 1
        if policy.retry:
            self._stats["retryable"] += 1
            logger.warning(f"[WORKER] Order {order_id} failed ({kind.value}): {reason}; requesting retry")
            raise RetryableJobError(order_id, reason) from exc

        logger.info(f"[WORKER] Order {order_id} failed ({kind.value}): {reason}")

    def _superseded(self, order_id: str, error: StaleOrderStateError) -> None:
        self._stats["superseded"] += 1
        logger.warning(f"[WORKER] {error}; another execution advanced order {order_id}, stopping")

    async def _apply(
        self,
        order_id: str,
        current: OrderStatus,
        outcome: Outcome,
        fields: dict[str, Any] | None = None,
        tx_hash: str | None = None,
    ) -> OrderStatus:
        """One pipeline step: decide, write atomically, then publish."""
        transition = advance(current, outcome, order_id)
        entry = ExecutionLogEntry.now(transition.next_status, transition.message)

        order = await asyncio.to_thread(self._store.update, order_id, fields or {}, entry, current)
        # The store may have moved the timestamp forward to keep the log ordered
        await self._publish(order_id, order.execution_logs[-1], tx_hash)
        return transition.next_status

    async def _publish(self, order_id: str, entry: ExecutionLogEntry, tx_hash: str | None) -> None:
        event = OrderEvent.from_log_entry(order_id, entry, tx_hash=tx_hash)
        try:
            await self._bus.publish(self._topic_for(order_id), encode(event.to_wire()))
        except Exception as e:
            self._stats["publish_errors"] += 1
            logger.warning(f"[WORKER] Publish failed for order {order_id} ({entry.status.value}): {e}")
