"""
Persistence Layer - SQLite-based order store.

Orders carry a single current status plus an append-only execution log
that serves as the audit trail.
"""

from order_engine.persistence.database import Database
from order_engine.persistence.order_store import (
    OrderNotFoundError,
    OrderStore,
    SqliteOrderStore,
    StaleOrderStateError,
)

__all__ = [
    "Database",
    "OrderNotFoundError",
    "OrderStore",
    "SqliteOrderStore",
    "StaleOrderStateError",
]
