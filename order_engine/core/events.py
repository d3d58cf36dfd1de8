"""
Order status event schema.

One OrderEvent is published per status transition. It is the wire
representation of the execution log entry written for that transition:

    {"orderId": ..., "status": ..., "timestamp": ..., "message": ..., "txHash": ...}

txHash is only present on the CONFIRMED event.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from order_engine.core.types import ExecutionLogEntry, OrderStatus


class OrderEvent(BaseModel):
    """Immutable, broadcast-only order status event."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    order_id: str = Field(alias="orderId")
    status: OrderStatus
    timestamp: datetime
    message: str
    tx_hash: str | None = Field(default=None, alias="txHash")

    @classmethod
    def from_log_entry(
        cls,
        order_id: str,
        entry: ExecutionLogEntry,
        tx_hash: str | None = None,
    ) -> OrderEvent:
        """Build the event that mirrors a freshly appended log entry."""
        return cls(
            order_id=order_id,
            status=entry.status,
            timestamp=entry.timestamp,
            message=entry.message,
            tx_hash=tx_hash,
        )

    def to_wire(self) -> dict[str, Any]:
        """Convert to the camelCase dict sent on the bus and to clients."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> OrderEvent:
        """Reconstruct an event from its wire dict."""
        return cls.model_validate(data)
