"""
Tests for SqliteOrderStore.

Verifies:
- Orders are created in PENDING with an empty log
- update() sets status, fields and appends one log entry atomically
- Compare-and-set updates detect concurrent changes
- tx_hash is immutable once set
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from order_engine.core.types import ExecutionLogEntry, OrderStatus
from order_engine.persistence import (
    Database,
    OrderNotFoundError,
    SqliteOrderStore,
    StaleOrderStateError,
)


@pytest.fixture
def store(tmp_path):
    return SqliteOrderStore(Database(tmp_path / "orders.db"))


def entry(status: OrderStatus, message: str = "step") -> ExecutionLogEntry:
    return ExecutionLogEntry.now(status, message)


class TestOrderCreation:

    def test_create_order(self, store):
        """New orders start in PENDING without logs or results."""
        order = store.create("A", 100.0)

        assert order.id == "A"
        assert order.amount == 100.0
        assert order.status == OrderStatus.PENDING
        assert order.tx_hash is None
        assert order.execution_logs == []

    def test_duplicate_id_rejected(self, store):
        """Order ids are unique."""
        store.create("A", 1.0)
        with pytest.raises(sqlite3.IntegrityError):
            store.create("A", 2.0)

    def test_non_positive_amount_rejected(self, store):
        with pytest.raises(ValueError):
            store.create("A", 0)

    def test_get_missing_returns_none(self, store):
        assert store.get("missing") is None

    def test_schema_survives_reopen(self, tmp_path):
        """Reopening an existing database keeps its data."""
        SqliteOrderStore(Database(tmp_path / "orders.db")).create("A", 5.0)
        reopened = SqliteOrderStore(Database(tmp_path / "orders.db"))
        assert reopened.get("A").amount == 5.0


class TestOrderUpdates:

    def test_update_sets_status_and_appends_log(self, store):
        """One update = one status change + one log row."""
        store.create("A", 100.0)
        order = store.update("A", {}, entry(OrderStatus.ROUTING, "Finding best route..."))

        assert order.status == OrderStatus.ROUTING
        assert len(order.execution_logs) == 1
        assert order.execution_logs[0].status == OrderStatus.ROUTING
        assert order.execution_logs[0].message == "Finding best route..."

    def test_logs_are_append_only_and_ordered(self, store):
        """Entries come back in write order with increasing timestamps."""
        store.create("A", 100.0)
        for status in (OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED):
            store.update("A", {}, entry(status))

        logs = store.list_logs("A")
        assert [e.status for e in logs] == [
            OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED
        ]
        timestamps = [e.timestamp for e in logs]
        assert all(a < b for a, b in zip(timestamps, timestamps[1:]))

    def test_timestamps_strictly_increase_when_clock_steps_back(self, store):
        """An entry stamped before the previous one is moved just after it."""
        store.create("A", 100.0)
        later = datetime(2030, 1, 1, tzinfo=timezone.utc)
        earlier = later - timedelta(seconds=5)
        store.update("A", {}, ExecutionLogEntry(OrderStatus.ROUTING, later, "routing"))

        order = store.update("A", {}, ExecutionLogEntry(OrderStatus.BUILDING, earlier, "building"))

        first, second = order.execution_logs
        assert second.timestamp > first.timestamp
        assert second.timestamp == later + timedelta(microseconds=1)
        assert second.message == "building"
        assert order.updated_at == second.timestamp

    def test_update_result_fields(self, store):
        store.create("A", 100.0)
        order = store.update(
            "A", {"tx_hash": "0xabc", "final_price": 0.99}, entry(OrderStatus.CONFIRMED)
        )

        assert order.tx_hash == "0xabc"
        assert order.final_price == 0.99

    def test_tx_hash_is_immutable(self, store):
        """A second tx_hash write keeps the first value."""
        store.create("A", 100.0)
        store.update("A", {"tx_hash": "0xfirst"}, entry(OrderStatus.ROUTING))
        order = store.update("A", {"tx_hash": "0xsecond"}, entry(OrderStatus.BUILDING))

        assert order.tx_hash == "0xfirst"

    def test_unknown_fields_rejected(self, store):
        """Only result fields can be updated; nothing is written otherwise."""
        store.create("A", 100.0)
        with pytest.raises(ValueError):
            store.update("A", {"amount": 5}, entry(OrderStatus.ROUTING))

        assert store.get("A").execution_logs == []

    def test_update_missing_order(self, store):
        with pytest.raises(OrderNotFoundError) as exc_info:
            store.update("missing", {}, entry(OrderStatus.ROUTING))
        assert exc_info.value.order_id == "missing"


class TestCompareAndSet:

    def test_expected_status_matches(self, store):
        store.create("A", 100.0)
        order = store.update(
            "A", {}, entry(OrderStatus.ROUTING), expected_status=OrderStatus.PENDING
        )
        assert order.status == OrderStatus.ROUTING

    def test_stale_expected_status_writes_nothing(self, store):
        """A losing compare-and-set leaves status and log untouched."""
        store.create("A", 100.0)
        store.update("A", {}, entry(OrderStatus.ROUTING), expected_status=OrderStatus.PENDING)

        with pytest.raises(StaleOrderStateError) as exc_info:
            store.update(
                "A", {}, entry(OrderStatus.ROUTING), expected_status=OrderStatus.PENDING
            )

        assert exc_info.value.expected == OrderStatus.PENDING
        assert exc_info.value.actual == OrderStatus.ROUTING
        order = store.get("A")
        assert order.status == OrderStatus.ROUTING
        assert len(order.execution_logs) == 1

    def test_expected_status_on_missing_order(self, store):
        with pytest.raises(OrderNotFoundError):
            store.update(
                "missing", {}, entry(OrderStatus.ROUTING), expected_status=OrderStatus.PENDING
            )
