"""
Worker Service - standalone order execution process.

Consumes:
  jobs.orders                  - Execution jobs (JetStream durable consumer)

Publishes:
  orders.updates.{order_id}    - One status event per transition

Run several instances to scale out; they share the durable consumer so
each delivery goes to one process.

Usage:
    python -m order_engine.spine.worker_service
"""

from __future__ import annotations

import asyncio
import logging

from dotenv import load_dotenv

load_dotenv()

from order_engine.core.config import EngineConfig, get_config
from order_engine.execution.mock_dex_router import MockDexRouter
from order_engine.execution.pool import WorkerPool
from order_engine.execution.worker import ExecutionWorker
from order_engine.persistence.database import Database
from order_engine.persistence.order_store import SqliteOrderStore
from order_engine.spine.event_bus import NatsEventBus
from order_engine.spine.job_queue import NatsJobQueue
from order_engine.spine.nats_client import SpineClient

logger = logging.getLogger(__name__)


class WorkerService:
    """Worker pool process wired to SQLite, NATS and the mock DEX router."""

    SERVICE_NAME = "order_worker"

    def __init__(self, config: EngineConfig | None = None):
        self._config = config or get_config()
        cfg = self._config

        self._spine = SpineClient(url=cfg.spine.nats_url, name=self.SERVICE_NAME)
        self._bus = NatsEventBus(self._spine, owns_connection=False)
        self._queue = NatsJobQueue(self._spine, max_deliver=cfg.worker.max_attempts)

        store = SqliteOrderStore(Database(cfg.runtime.db_path))
        worker = ExecutionWorker(store, MockDexRouter(cfg.router), self._bus, config=cfg.worker)
        self._pool = WorkerPool(self._queue, worker, config=cfg.worker)

    @property
    def stats(self) -> dict:
        return {**self._pool.stats, "nats": self._spine.stats}

    async def start(self) -> None:
        logger.info(f"[{self.SERVICE_NAME}] Starting...")
        await self._bus.start()
        await self._queue.start()
        await self._pool.start()
        logger.info(f"[{self.SERVICE_NAME}] Started")

    async def stop(self) -> None:
        logger.info(f"[{self.SERVICE_NAME}] Stopping...")
        await self._pool.stop()
        await self._queue.close()
        await self._spine.close()
        logger.info(f"[{self.SERVICE_NAME}] Stopped ({self._pool.stats})")


async def main() -> None:
    """Run the worker as a standalone service."""
    config = get_config()
    logging.basicConfig(
        level=config.runtime.log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    service = WorkerService(config)
    try:
        await service.start()
        while True:
            await asyncio.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
