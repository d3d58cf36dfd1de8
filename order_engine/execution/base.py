"""
Execution Base Contract - DEX router interface and fault classification.

Router faults form a tagged variant: one RouterError type carrying a
FaultKind. The worker classifies every exception through FAULT_POLICY,
which must have an entry for each FaultKind member.

Fault handling:
- SLIPPAGE:  business-rule rejection, terminal, job completes (no retry)
- REJECTED:  router refused the request outright, terminal, no retry
- TRANSIENT: network/system fault, order marked FAILED, job retried
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from order_engine.core.order_fsm import Outcome
from order_engine.core.types import ExecutionResult, OrderStatus, Quote


class FaultKind(Enum):
    """Router fault classes."""

    SLIPPAGE = "slippage"
    REJECTED = "rejected"
    TRANSIENT = "transient"


class RouterError(Exception):
    """Any failure reported by a DEX router."""

    def __init__(self, kind: FaultKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(message)

    @classmethod
    def slippage(cls, message: str) -> RouterError:
        return cls(FaultKind.SLIPPAGE, message)

    @classmethod
    def rejected(cls, message: str) -> RouterError:
        return cls(FaultKind.REJECTED, message)

    @classmethod
    def transient(cls, message: str) -> RouterError:
        return cls(FaultKind.TRANSIENT, message)


class RetryableJobError(Exception):
    """Signals the delivery layer to re-enqueue the job."""

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Order {order_id} needs retry: {reason}")


class OrderInFlightError(RetryableJobError):
    """Another execution currently owns the order (or died holding it)."""

    def __init__(self, order_id: str, status: OrderStatus):
        self.status = status
        super().__init__(order_id, f"order is already {status.value}")


@dataclass(frozen=True)
class FaultPolicy:
    """How the worker reacts to one fault class."""

    to_outcome: Callable[[str], Outcome]
    retry: bool


FAULT_POLICY: dict[FaultKind, FaultPolicy] = {
    FaultKind.SLIPPAGE: FaultPolicy(to_outcome=Outcome.slippage, retry=False),
    FaultKind.REJECTED: FaultPolicy(to_outcome=Outcome.rejected, retry=False),
    FaultKind.TRANSIENT: FaultPolicy(to_outcome=Outcome.fault, retry=True),
}


def classify_fault(exc: BaseException) -> FaultKind:
    """Map any exception raised while executing an order to a fault class."""
    if isinstance(exc, RouterError):
        return exc.kind
    return FaultKind.TRANSIENT


def describe_fault(exc: BaseException) -> str:
    """Human-readable reason recorded in the execution log."""
    if isinstance(exc, RouterError):
        return exc.message
    text = str(exc)
    return text or type(exc).__name__


class DexRouter(ABC):
    """
    Abstract DEX router.

    Routers:
    - Price a trade amount across venues and return the best quote
    - Execute a quote and report the realized result
    - Raise RouterError (never bare exceptions) for failures they recognize
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Router name for logs."""
        ...

    @abstractmethod
    async def get_quote(self, amount: float) -> Quote:
        """Return the best quote for the amount."""
        ...

    @abstractmethod
    async def execute_swap(self, quote: Quote) -> ExecutionResult:
        """Execute a quote. Raises RouterError(SLIPPAGE) on price breach."""
        ...
