"""
Execution layer - DEX routing, the execution worker and its job consumers.
"""

from order_engine.execution.base import (
    FAULT_POLICY,
    DexRouter,
    FaultKind,
    FaultPolicy,
    OrderInFlightError,
    RetryableJobError,
    RouterError,
    classify_fault,
    describe_fault,
)
from order_engine.execution.mock_dex_router import MockDexRouter, VENUES
from order_engine.execution.worker import ExecutionWorker
from order_engine.execution.pool import WorkerPool, backoff_delay

__all__ = [
    # Contract
    "FAULT_POLICY",
    "DexRouter",
    "FaultKind",
    "FaultPolicy",
    "OrderInFlightError",
    "RetryableJobError",
    "RouterError",
    "classify_fault",
    "describe_fault",
    # Router
    "MockDexRouter",
    "VENUES",
    # Worker
    "ExecutionWorker",
    "WorkerPool",
    "backoff_delay",
]
