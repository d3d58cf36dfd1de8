"""
Order Execution Finite State Machine (FSM).

advance() is the ONLY place that decides order status transitions.
It is a pure function: it never touches the store or the event bus.
Invalid transitions raise errors - this ensures deterministic behavior.

Order States:
    PENDING -> ROUTING -> BUILDING -> SUBMITTED -> CONFIRMED
                  |-> FAILED  |-> FAILED   |-> FAILED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from order_engine.core.types import ExecutionResult, OrderStatus, Quote


class OutcomeKind(str, Enum):
    """What happened in the step that just finished."""

    START = "START"
    QUOTED = "QUOTED"
    BUILT = "BUILT"
    EXECUTED = "EXECUTED"
    SLIPPAGE = "SLIPPAGE"
    REJECTED = "REJECTED"
    FAULT = "FAULT"


FAILURE_OUTCOMES = frozenset({OutcomeKind.SLIPPAGE, OutcomeKind.REJECTED, OutcomeKind.FAULT})


@dataclass(frozen=True)
class Outcome:
    """Tagged step outcome. Only the field matching `kind` is populated."""

    kind: OutcomeKind
    quote: Quote | None = None
    result: ExecutionResult | None = None
    reason: str = ""

    @classmethod
    def start(cls) -> Outcome:
        return cls(OutcomeKind.START)

    @classmethod
    def quoted(cls, quote: Quote) -> Outcome:
        return cls(OutcomeKind.QUOTED, quote=quote)

    @classmethod
    def built(cls) -> Outcome:
        return cls(OutcomeKind.BUILT)

    @classmethod
    def executed(cls, result: ExecutionResult) -> Outcome:
        return cls(OutcomeKind.EXECUTED, result=result)

    @classmethod
    def slippage(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.SLIPPAGE, reason=reason)

    @classmethod
    def rejected(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.REJECTED, reason=reason)

    @classmethod
    def fault(cls, reason: str) -> Outcome:
        return cls(OutcomeKind.FAULT, reason=reason)


@dataclass(frozen=True)
class Transition:
    """Next status plus the audit message to record for it."""

    next_status: OrderStatus
    message: str


class InvalidTransitionError(Exception):
    """Raised when an outcome cannot be applied to the current status."""

    def __init__(self, current_status: OrderStatus, outcome: OutcomeKind, order_id: str = ""):
        self.current_status = current_status
        self.outcome = outcome
        self.order_id = order_id
        super().__init__(
            f"Invalid transition from {current_status.value} on {outcome.value}"
            + (f" for order {order_id}" if order_id else "")
        )


# Valid state transitions (from_status -> set of valid to_statuses)
VALID_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.ROUTING},
    OrderStatus.ROUTING: {OrderStatus.BUILDING, OrderStatus.FAILED},
    OrderStatus.BUILDING: {OrderStatus.SUBMITTED, OrderStatus.FAILED},
    OrderStatus.SUBMITTED: {OrderStatus.CONFIRMED, OrderStatus.FAILED},
    OrderStatus.CONFIRMED: set(),  # Terminal state
    OrderStatus.FAILED: set(),  # Terminal state
}

# Happy-path outcome -> status it leads to
_FORWARD_TARGETS: dict[OutcomeKind, OrderStatus] = {
    OutcomeKind.START: OrderStatus.ROUTING,
    OutcomeKind.QUOTED: OrderStatus.BUILDING,
    OutcomeKind.BUILT: OrderStatus.SUBMITTED,
    OutcomeKind.EXECUTED: OrderStatus.CONFIRMED,
}


def _message_for(outcome: Outcome) -> str:
    kind = outcome.kind
    if kind is OutcomeKind.START:
        return "Finding best route..."
    if kind is OutcomeKind.QUOTED:
        return f"Quote received: {outcome.quote.provider} @ {outcome.quote.price}"
    if kind is OutcomeKind.BUILT:
        return "Transaction submitted to network"
    if kind is OutcomeKind.EXECUTED:
        return f"Swap confirmed. Final Price: {outcome.result.final_price}"
    if kind is OutcomeKind.SLIPPAGE:
        return f"Slippage error: {outcome.reason}"
    if kind is OutcomeKind.REJECTED:
        return f"Order rejected: {outcome.reason}"
    return f"Network/System error: {outcome.reason}. Retrying..."


def advance(current_status: OrderStatus, outcome: Outcome, order_id: str = "") -> Transition:
    """
    Decide the next status for an order.

    Args:
        current_status: Status currently stored for the order.
        outcome: Result of the step that just ran.
        order_id: Only used to make errors traceable.

    Raises:
        InvalidTransitionError: From a terminal status, or when the outcome
            does not belong to the current stage of the pipeline.
    """
    if outcome.kind in FAILURE_OUTCOMES:
        next_status = OrderStatus.FAILED
    else:
        next_status = _FORWARD_TARGETS[outcome.kind]

    if next_status not in VALID_TRANSITIONS[current_status]:
        raise InvalidTransitionError(current_status, outcome.kind, order_id)

    if outcome.kind is OutcomeKind.QUOTED and outcome.quote is None:
        raise ValueError("QUOTED outcome requires a quote")
    if outcome.kind is OutcomeKind.EXECUTED and outcome.result is None:
        raise ValueError("EXECUTED outcome requires an execution result")

    return Transition(next_status=next_status, message=_message_for(outcome))
