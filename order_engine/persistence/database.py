"""
Database - SQLite connection and schema management.

Schema designed for:
- One current status field per order
- Append-only execution log (one row per transition)
- Short independent transactions, one per pipeline step
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Orders: current state of every order
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    amount REAL NOT NULL CHECK (amount > 0),
    status TEXT NOT NULL,  -- PENDING, ROUTING, BUILDING, SUBMITTED, CONFIRMED, FAILED

    -- Set once on CONFIRMED
    tx_hash TEXT,
    final_price REAL,

    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);

-- Order logs: append-only audit trail, one row per transition
CREATE TABLE IF NOT EXISTS order_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT NOT NULL,
    logged_at TEXT NOT NULL,

    FOREIGN KEY (order_id) REFERENCES orders(id)
);
CREATE INDEX IF NOT EXISTS idx_order_logs_order_id ON order_logs(order_id);
"""


class Database:
    """SQLite database manager. Opens one connection per unit of work."""

    def __init__(self, db_path: str | Path | None = None):
        """
        Initialize database.

        Args:
            db_path: Path to SQLite file. Defaults to ./data/orders.db
        """
        if db_path is None:
            db_path = Path("./data/orders.db")

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            )
            if cursor.fetchone() is None:
                # Fresh database - create all tables
                conn.executescript(SCHEMA)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.now(timezone.utc).isoformat())
                )
                logger.info(f"[STORE] Database initialized at {self.db_path} (schema v{SCHEMA_VERSION})")
            else:
                cursor = conn.execute("SELECT MAX(version) FROM schema_version")
                current_version = cursor.fetchone()[0] or 0
                if current_version < SCHEMA_VERSION:
                    self._migrate(conn, current_version, SCHEMA_VERSION)

    def _migrate(self, conn: sqlite3.Connection, from_version: int, to_version: int) -> None:
        """Run schema migrations."""
        logger.info(f"[STORE] Migrating database from v{from_version} to v{to_version}")
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (to_version, datetime.now(timezone.utc).isoformat())
        )

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection; commits on success, rolls back on error."""
        conn = sqlite3.connect(self.db_path, timeout=30.0)
        conn.row_factory = sqlite3.Row  # Enable dict-like access
        conn.execute("PRAGMA journal_mode=WAL")  # Better concurrency
        conn.execute("PRAGMA foreign_keys=ON")

        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
