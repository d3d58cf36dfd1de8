"""Core modules: order types, state machine, events, and configuration."""

from order_engine.core.types import (
    ExecutionLogEntry,
    ExecutionResult,
    Order,
    OrderStatus,
    Quote,
    TERMINAL_STATUSES,
)
from order_engine.core.order_fsm import (
    InvalidTransitionError,
    Outcome,
    OutcomeKind,
    Transition,
    VALID_TRANSITIONS,
    advance,
)
from order_engine.core.events import OrderEvent
from order_engine.core.config import EngineConfig, get_config, reset_config

__all__ = [
    # Types
    "ExecutionLogEntry",
    "ExecutionResult",
    "Order",
    "OrderStatus",
    "Quote",
    "TERMINAL_STATUSES",
    # State machine
    "InvalidTransitionError",
    "Outcome",
    "OutcomeKind",
    "Transition",
    "VALID_TRANSITIONS",
    "advance",
    # Events
    "OrderEvent",
    # Config
    "EngineConfig",
    "get_config",
    "reset_config",
]
