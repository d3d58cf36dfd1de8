"""
Order API server.

Serves:
  GET  /health                  - Liveness (process health only)
  POST /api/orders              - Create a PENDING order and enqueue its job
  GET  /api/orders/{order_id}   - Stored order with its execution log
  WS   /ws/orders/{order_id}    - Live status events for one order

With embedded_worker enabled the server also runs a WorkerPool in-process;
otherwise run order_engine.spine.worker_service separately.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, HTTPException, WebSocket
from pydantic import BaseModel, ConfigDict, Field

from order_engine.core.config import EngineConfig, get_config
from order_engine.execution.base import DexRouter
from order_engine.execution.mock_dex_router import MockDexRouter
from order_engine.execution.pool import WorkerPool
from order_engine.execution.worker import ExecutionWorker
from order_engine.persistence.database import Database
from order_engine.persistence.order_store import OrderStore, SqliteOrderStore
from order_engine.server.gateway import SubscriptionGateway
from order_engine.spine.event_bus import EventBus, NatsEventBus
from order_engine.spine.job_queue import JobQueue, NatsJobQueue
from order_engine.spine.nats_client import SpineClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: float = Field(gt=0)
    # Used as a NATS subject token: no dots, wildcards or whitespace
    order_id: str | None = Field(
        default=None, alias="orderId", min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_-]+$"
    )


class CreateOrderResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    status: str


class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    websocket_clients: int
    bus_connected: bool
    worker_running: bool


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

class OrderServices:
    """Explicitly wired collaborators shared by the HTTP and websocket handlers."""

    def __init__(
        self,
        store: OrderStore,
        bus: EventBus,
        queue: JobQueue,
        router: DexRouter,
        config: EngineConfig,
        spine: SpineClient | None = None,
    ):
        self.store = store
        self.bus = bus
        self.queue = queue
        self.router = router
        self.config = config
        self._spine = spine

        self.gateway = SubscriptionGateway(bus, topic_mode=config.spine.event_topic_mode)
        self.worker = ExecutionWorker(store, router, bus, config=config.worker)
        self.pool: WorkerPool | None = None
        if config.server.embedded_worker:
            self.pool = WorkerPool(queue, self.worker, config=config.worker)

    @classmethod
    def from_config(cls, config: EngineConfig) -> OrderServices:
        """Production wiring: SQLite store, NATS bus and JetStream jobs."""
        spine = SpineClient(url=config.spine.nats_url, name="order_api")
        return cls(
            store=SqliteOrderStore(Database(config.runtime.db_path)),
            bus=NatsEventBus(spine, owns_connection=False),
            queue=NatsJobQueue(spine, max_deliver=config.worker.max_attempts),
            router=MockDexRouter(config.router),
            config=config,
            spine=spine,
        )

    async def start(self) -> None:
        await self.bus.start()
        await self.queue.start()
        if self.pool is not None:
            await self.pool.start()

    async def stop(self) -> None:
        if self.pool is not None:
            await self.pool.stop()
        await self.queue.close()
        await self.bus.close()
        if self._spine is not None:
            await self._spine.close()


# ---------------------------------------------------------------------------
# FastAPI app factory
# ---------------------------------------------------------------------------

def create_app(services: OrderServices | None = None) -> FastAPI:
    """Create the FastAPI app. Builds production services when none are given."""
    if services is None:
        services = OrderServices.from_config(get_config())

    app = FastAPI(title="Order Execution Engine", version="0.1.0")
    app.state.services = services
    start_time = time.time()

    @app.on_event("startup")
    async def startup():
        await services.start()
        logger.info("[API] Started")

    @app.on_event("shutdown")
    async def shutdown():
        await services.stop()
        logger.info("[API] Stopped")

    # ---- Health ----

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok" if services.bus.is_connected else "degraded",
            uptime_seconds=time.time() - start_time,
            websocket_clients=services.gateway.active_connections,
            bus_connected=services.bus.is_connected,
            worker_running=services.pool is not None and services.pool.is_running,
        )

    # ---- Orders ----

    @app.post("/api/orders", status_code=201, response_model=CreateOrderResponse, response_model_by_alias=True)
    async def create_order(request: CreateOrderRequest):
        order_id = request.order_id or str(uuid.uuid4())
        try:
            order = await asyncio.to_thread(services.store.create, order_id, request.amount)
        except sqlite3.IntegrityError:
            raise HTTPException(status_code=409, detail=f"Order {order_id} already exists")

        try:
            job = await services.queue.enqueue(order_id)
        except Exception as e:
            logger.error(f"[API] Failed to enqueue order {order_id}: {e}")
            raise HTTPException(status_code=503, detail="Job queue unavailable")

        logger.info(f"[API] Order {order_id} accepted (job {job.job_id})")
        return CreateOrderResponse(order_id=order.id, status=order.status.value)

    @app.get("/api/orders/{order_id}")
    async def get_order(order_id: str):
        order = await asyncio.to_thread(services.store.get, order_id)
        if order is None:
            raise HTTPException(status_code=404, detail=f"Order {order_id} not found")
        return order.to_dict()

    # ---- WebSocket ----

    @app.websocket("/ws/orders/{order_id}")
    async def order_updates(websocket: WebSocket, order_id: str):
        await services.gateway.serve(websocket, order_id)

    return app


# ---------------------------------------------------------------------------
# Standalone entry point
# ---------------------------------------------------------------------------

async def main() -> None:
    """Run the API server as a standalone service."""
    import uvicorn

    config = get_config()
    logging.basicConfig(
        level=config.runtime.log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    server_config = uvicorn.Config(
        app="order_engine.server.main:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        log_level=config.runtime.log_level.lower(),
    )
    server = uvicorn.Server(server_config)
    await server.serve()


if __name__ == "__main__":
    asyncio.run(main())
