"""
Message Schemas for the NATS Data Spine.

Bus messages are MsgPack-encoded dicts for compact binary transport.

Topic naming convention:
  orders.updates.{order_id}  - Order status events (one per transition)
  orders.updates.>           - Broadcast subscription over all orders
  jobs.orders                - Order execution jobs (JetStream work queue)
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field

import msgpack


def encode(obj: dict) -> bytes:
    return msgpack.packb(obj, use_bin_type=True)


def decode(data: bytes) -> dict:
    return msgpack.unpackb(data, raw=False)


# ---------------------------------------------------------------------------
# Topic helpers
# ---------------------------------------------------------------------------

class Topics:
    """NATS topic constants."""

    # Order status events (plain pub/sub, no replay)
    ORDER_UPDATES_ALL = "orders.updates.>"

    # Execution jobs (JetStream work queue)
    ORDER_JOBS = "jobs.orders"
    ORDER_JOBS_STREAM = "ORDER_JOBS"

    @staticmethod
    def order_updates(order_id: str) -> str:
        return f"orders.updates.{order_id}"


def subject_matches(pattern: str, subject: str) -> bool:
    """
    NATS subject matching.

    `*` matches exactly one token, `>` matches one or more trailing tokens.
    """
    pattern_tokens = pattern.split(".")
    subject_tokens = subject.split(".")

    for i, token in enumerate(pattern_tokens):
        if token == ">":
            return len(subject_tokens) > i
        if i >= len(subject_tokens):
            return False
        if token != "*" and token != subject_tokens[i]:
            return False

    return len(pattern_tokens) == len(subject_tokens)


# ---------------------------------------------------------------------------
# Message dataclasses
# ---------------------------------------------------------------------------

@dataclass
class JobMsg:
    """Order execution job. Delivered at least once."""
    order_id: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: float = field(default_factory=time.time)  # unix epoch

    def encode(self) -> bytes:
        return encode(asdict(self))

    @classmethod
    def decode(cls, data: bytes) -> JobMsg:
        return cls(**decode(data))
