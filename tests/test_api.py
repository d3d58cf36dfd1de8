"""
Tests for the order API (FastAPI app with in-memory transport).
"""

import random
import time

import pytest
from fastapi.testclient import TestClient

from order_engine.core.config import (
    EngineConfig,
    RouterConfig,
    RuntimeConfig,
    ServerConfig,
    SpineConfig,
    WorkerConfig,
)
from order_engine.core.events import OrderEvent
from order_engine.core.types import ExecutionLogEntry, OrderStatus
from order_engine.execution import MockDexRouter
from order_engine.persistence import Database, SqliteOrderStore
from order_engine.server.main import OrderServices, create_app
from order_engine.spine.event_bus import InMemoryEventBus
from order_engine.spine.job_queue import InMemoryJobQueue, JobQueue
from order_engine.spine.schemas import Topics, encode


class RecordingQueue(JobQueue):
    def __init__(self, fail: bool = False):
        self.enqueued: list[str] = []
        self._fail = fail
        self._inner = InMemoryJobQueue()

    async def enqueue(self, order_id: str):
        if self._fail:
            raise ConnectionError("queue down")
        self.enqueued.append(order_id)
        return await self._inner.enqueue(order_id)

    async def receive(self, timeout: float = 1.0):
        return await self._inner.receive(timeout)


def make_config(tmp_path, embedded_worker: bool = False) -> EngineConfig:
    return EngineConfig(
        runtime=RuntimeConfig(db_path=tmp_path / "orders.db"),
        spine=SpineConfig(),
        worker=WorkerConfig(
            concurrency=2, build_delay_sec=0.0, backoff_base_sec=0.0, receive_timeout_sec=0.05
        ),
        router=RouterConfig(quote_latency_sec=0.0, execute_latency_sec=0.0, max_price_drift=0.0),
        server=ServerConfig(embedded_worker=embedded_worker),
    )


def make_services(tmp_path, queue=None, embedded_worker: bool = False) -> OrderServices:
    config = make_config(tmp_path, embedded_worker)
    return OrderServices(
        store=SqliteOrderStore(Database(config.runtime.db_path)),
        bus=InMemoryEventBus(),
        queue=queue or RecordingQueue(),
        router=MockDexRouter(config.router, rng=random.Random(3)),
        config=config,
    )


@pytest.fixture
def services(tmp_path):
    return make_services(tmp_path)


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.01)


class TestHealth:

    def test_health_ok(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["bus_connected"] is True
        assert body["worker_running"] is False
        assert body["websocket_clients"] == 0


class TestCreateOrder:

    def test_create_order(self, client, services):
        """A new order is stored PENDING and its job enqueued."""
        response = client.post("/api/orders", json={"amount": 100})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "PENDING"
        assert services.queue.enqueued == [body["orderId"]]
        assert services.store.get(body["orderId"]).status == OrderStatus.PENDING

    def test_create_with_client_id(self, client, services):
        response = client.post("/api/orders", json={"amount": 5, "orderId": "A"})

        assert response.status_code == 201
        assert response.json()["orderId"] == "A"

    def test_duplicate_id_conflict(self, client, services):
        client.post("/api/orders", json={"amount": 5, "orderId": "A"})
        response = client.post("/api/orders", json={"amount": 7, "orderId": "A"})

        assert response.status_code == 409
        assert services.queue.enqueued == ["A"]

    @pytest.mark.parametrize("payload", [{"amount": 0}, {"amount": -1}, {}, {"amount": "lots"}])
    def test_invalid_amount(self, client, services, payload):
        response = client.post("/api/orders", json=payload)

        assert response.status_code == 422
        assert services.queue.enqueued == []

    @pytest.mark.parametrize("order_id", ["a b", "a..b", "ord.", "*", ">", "orders.updates"])
    def test_order_id_must_be_subject_token(self, client, services, order_id):
        """Ids end up in NATS subjects, so dots, wildcards and spaces are refused."""
        response = client.post("/api/orders", json={"amount": 5, "orderId": order_id})

        assert response.status_code == 422
        assert services.queue.enqueued == []
        assert services.store.get(order_id) is None

    def test_order_id_allowed_characters(self, client):
        response = client.post("/api/orders", json={"amount": 5, "orderId": "Order_42-b"})

        assert response.status_code == 201

    def test_queue_unavailable(self, tmp_path):
        services = make_services(tmp_path, queue=RecordingQueue(fail=True))
        with TestClient(create_app(services)) as client:
            response = client.post("/api/orders", json={"amount": 5, "orderId": "A"})

        assert response.status_code == 503


class TestGetOrder:

    def test_get_order(self, client):
        client.post("/api/orders", json={"amount": 5, "orderId": "A"})
        response = client.get("/api/orders/A")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == "A"
        assert body["status"] == "PENDING"
        assert body["execution_logs"] == []

    def test_missing_order(self, client):
        assert client.get("/api/orders/missing").status_code == 404


class TestOrderStream:

    def test_websocket_receives_own_events(self, client, services):
        with client.websocket_connect("/ws/orders/A") as ws:
            wait_for(lambda: services.bus.subscriber_count == 1)
            for order_id in ("B", "A"):
                entry = ExecutionLogEntry.now(OrderStatus.ROUTING, "Finding best route...")
                payload = encode(OrderEvent.from_log_entry(order_id, entry).to_wire())
                client.portal.call(services.bus.publish, Topics.order_updates(order_id), payload)

            event = ws.receive_json()

        assert event["orderId"] == "A"
        assert event["status"] == "ROUTING"
        wait_for(lambda: services.bus.subscriber_count == 0)
        wait_for(lambda: services.gateway.active_connections == 0)


class TestEmbeddedWorker:

    def test_order_confirmed_end_to_end(self, tmp_path):
        services = make_services(tmp_path, queue=InMemoryJobQueue(), embedded_worker=True)
        with TestClient(create_app(services)) as client:
            assert client.get("/health").json()["worker_running"] is True
            client.post("/api/orders", json={"amount": 25, "orderId": "A"})

            wait_for(lambda: client.get("/api/orders/A").json()["status"] == "CONFIRMED")
            body = client.get("/api/orders/A").json()

        assert [entry["status"] for entry in body["execution_logs"]] == [
            "ROUTING", "BUILDING", "SUBMITTED", "CONFIRMED"
        ]
        assert body["tx_hash"].startswith("0x")
