"""Order domain types - statuses, audit log entries, quotes and swap results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    """Pipeline statuses an order moves through."""

    PENDING = "PENDING"
    ROUTING = "ROUTING"
    BUILDING = "BUILDING"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.FAILED})


@dataclass(frozen=True)
class ExecutionLogEntry:
    """One audit trail entry; exactly one is written per transition."""

    status: OrderStatus
    timestamp: datetime
    message: str

    @classmethod
    def now(cls, status: OrderStatus, message: str) -> ExecutionLogEntry:
        return cls(status=status, timestamp=datetime.now(timezone.utc), message=message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
        }


@dataclass
class Order:
    """Stored order record with its append-only execution log."""

    id: str
    amount: float
    status: OrderStatus
    created_at: datetime
    updated_at: datetime

    tx_hash: str | None = None
    final_price: float | None = None

    execution_logs: list[ExecutionLogEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "final_price": self.final_price,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "execution_logs": [entry.to_dict() for entry in self.execution_logs],
        }


@dataclass(frozen=True)
class Quote:
    """Priced offer from a DEX venue. Transient, never persisted."""

    provider: str
    price: float
    amount: float


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a successfully executed swap."""

    tx_hash: str
    final_price: float
