"""
Order Store - durable order records with an append-only execution log.

Every update() is a single transaction: the status change, any result
fields and the new log row become visible together or not at all.
Passing expected_status turns the write into a compare-and-set so two
executions racing on the same order cannot both advance it.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from order_engine.core.types import ExecutionLogEntry, Order, OrderStatus
from order_engine.persistence.database import Database

logger = logging.getLogger(__name__)

# Fields update() may set besides status
UPDATABLE_FIELDS = frozenset({"tx_hash", "final_price"})


class OrderNotFoundError(Exception):
    """Raised when an order id has no stored record."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class StaleOrderStateError(Exception):
    """Raised when a compare-and-set update sees a different current status."""

    def __init__(self, order_id: str, expected: OrderStatus, actual: OrderStatus):
        self.order_id = order_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Order {order_id} is {actual.value}, expected {expected.value}"
        )


class OrderStore(ABC):
    """Order persistence contract consumed by the execution pipeline."""

    @abstractmethod
    def create(self, order_id: str, amount: float) -> Order:
        """Create an order in PENDING with an empty log."""
        ...

    @abstractmethod
    def get(self, order_id: str) -> Order | None:
        """Load an order with its full execution log, or None."""
        ...

    @abstractmethod
    def update(
        self,
        order_id: str,
        fields: dict[str, Any],
        log_entry: ExecutionLogEntry,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        """
        Atomically set status (taken from log_entry), apply fields and
        append log_entry.

        Raises:
            OrderNotFoundError: No such order.
            StaleOrderStateError: expected_status given and not current.
        """
        ...


def _parse_ts(value: str) -> datetime:
    return datetime.fromisoformat(value)


class SqliteOrderStore(OrderStore):
    """SQLite-backed order store."""

    def __init__(self, db: Database):
        self.db = db

    def create(self, order_id: str, amount: float) -> Order:
        if amount <= 0:
            raise ValueError(f"Order amount must be positive, got {amount}")

        now = datetime.now(timezone.utc).isoformat()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO orders (id, amount, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (order_id, amount, OrderStatus.PENDING.value, now, now)
            )

        logger.debug(f"[STORE] Created order {order_id} amount={amount}")
        return self.get(order_id)

    def get(self, order_id: str) -> Order | None:
        with self.db.connection() as conn:
            return self._load(conn, order_id)

    def update(
        self,
        order_id: str,
        fields: dict[str, Any],
        log_entry: ExecutionLogEntry,
        expected_status: OrderStatus | None = None,
    ) -> Order:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update order fields: {sorted(unknown)}")

        with self.db.connection() as conn:
            # Take the write lock before reading the last log entry
            conn.execute("BEGIN IMMEDIATE")
            log_entry = self._after_last_entry(conn, order_id, log_entry)

            assignments = ["status = ?", "updated_at = ?"]
            params: list[Any] = [log_entry.status.value, log_entry.timestamp.isoformat()]
            for name in sorted(fields):
                if name == "tx_hash":
                    # Immutable once set
                    assignments.append("tx_hash = COALESCE(tx_hash, ?)")
                else:
                    assignments.append(f"{name} = ?")
                params.append(fields[name])

            query = f"UPDATE orders SET {', '.join(assignments)} WHERE id = ?"
            params.append(order_id)
            if expected_status is not None:
                query += " AND status = ?"
                params.append(expected_status.value)

            cursor = conn.execute(query, tuple(params))
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM orders WHERE id = ?", (order_id,)
                ).fetchone()
                if row is None:
                    raise OrderNotFoundError(order_id)
                raise StaleOrderStateError(
                    order_id, expected_status, OrderStatus(row["status"])
                )

            conn.execute(
                """
                INSERT INTO order_logs (order_id, status, message, logged_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    order_id, log_entry.status.value, log_entry.message,
                    log_entry.timestamp.isoformat()
                )
            )
            order = self._load(conn, order_id)

        logger.debug(f"[STORE] Order {order_id} -> {log_entry.status.value}")
        return order

    def list_logs(self, order_id: str) -> list[ExecutionLogEntry]:
        """Get the execution log of an order, oldest first."""
        with self.db.connection() as conn:
            return self._load_logs(conn, order_id)

    def _after_last_entry(
        self, conn: sqlite3.Connection, order_id: str, log_entry: ExecutionLogEntry
    ) -> ExecutionLogEntry:
        """Keep log timestamps strictly increasing even if the wall clock steps back."""
        row = conn.execute(
            "SELECT logged_at FROM order_logs WHERE order_id = ? ORDER BY id DESC LIMIT 1",
            (order_id,)
        ).fetchone()
        if row is None:
            return log_entry

        last = _parse_ts(row["logged_at"])
        if log_entry.timestamp > last:
            return log_entry
        return replace(log_entry, timestamp=last + timedelta(microseconds=1))

    def _load(self, conn: sqlite3.Connection, order_id: str) -> Order | None:
        row = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        if row is None:
            return None

        return Order(
            id=row["id"],
            amount=row["amount"],
            status=OrderStatus(row["status"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            tx_hash=row["tx_hash"],
            final_price=row["final_price"],
            execution_logs=self._load_logs(conn, order_id),
        )

    def _load_logs(self, conn: sqlite3.Connection, order_id: str) -> list[ExecutionLogEntry]:
        rows = conn.execute(
            "SELECT status, message, logged_at FROM order_logs WHERE order_id = ? ORDER BY id",
            (order_id,)
        ).fetchall()
        return [
            ExecutionLogEntry(
                status=OrderStatus(row["status"]),
                timestamp=_parse_ts(row["logged_at"]),
                message=row["message"],
            )
            for row in rows
        ]
