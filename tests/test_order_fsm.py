"""
Tests for the order state machine.

Verifies:
- The happy path PENDING -> ROUTING -> BUILDING -> SUBMITTED -> CONFIRMED
- FAILED is reachable from ROUTING, BUILDING and SUBMITTED only
- Terminal statuses reject every outcome
- Audit messages for each transition
"""

import pytest

from order_engine.core.order_fsm import (
    FAILURE_OUTCOMES,
    InvalidTransitionError,
    Outcome,
    OutcomeKind,
    VALID_TRANSITIONS,
    advance,
)
from order_engine.core.types import ExecutionResult, OrderStatus, Quote


QUOTE = Quote(provider="Raydium", price=1.0, amount=100.0)
RESULT = ExecutionResult(tx_hash="0xabc", final_price=0.99)

ALL_OUTCOMES = [
    Outcome.start(),
    Outcome.quoted(QUOTE),
    Outcome.built(),
    Outcome.executed(RESULT),
    Outcome.slippage("moved"),
    Outcome.rejected("bad amount"),
    Outcome.fault("timeout"),
]


class TestOrderStateMachine:
    """Test suite for advance()."""

    def test_full_happy_path(self):
        """Walk an order from PENDING to CONFIRMED."""
        status = OrderStatus.PENDING
        visited = []
        for outcome in [Outcome.start(), Outcome.quoted(QUOTE), Outcome.built(), Outcome.executed(RESULT)]:
            status = advance(status, outcome).next_status
            visited.append(status)

        assert visited == [
            OrderStatus.ROUTING,
            OrderStatus.BUILDING,
            OrderStatus.SUBMITTED,
            OrderStatus.CONFIRMED,
        ]

    @pytest.mark.parametrize("status", [OrderStatus.ROUTING, OrderStatus.BUILDING, OrderStatus.SUBMITTED])
    def test_failure_from_active_statuses(self, status):
        """Every failure outcome leads to FAILED from an active status."""
        for outcome in (Outcome.slippage("x"), Outcome.rejected("x"), Outcome.fault("x")):
            assert advance(status, outcome).next_status == OrderStatus.FAILED

    def test_pending_cannot_fail_directly(self):
        """PENDING only moves to ROUTING."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            advance(OrderStatus.PENDING, Outcome.fault("boom"), order_id="A")

        assert exc_info.value.current_status == OrderStatus.PENDING
        assert exc_info.value.outcome == OutcomeKind.FAULT
        assert exc_info.value.order_id == "A"

    @pytest.mark.parametrize("status", [OrderStatus.CONFIRMED, OrderStatus.FAILED])
    def test_terminal_statuses_reject_everything(self, status):
        """No outcome can leave CONFIRMED or FAILED."""
        for outcome in ALL_OUTCOMES:
            with pytest.raises(InvalidTransitionError):
                advance(status, outcome)

    def test_out_of_order_outcomes_rejected(self):
        """Skipping or repeating a stage is invalid."""
        with pytest.raises(InvalidTransitionError):
            advance(OrderStatus.PENDING, Outcome.quoted(QUOTE))
        with pytest.raises(InvalidTransitionError):
            advance(OrderStatus.ROUTING, Outcome.start())
        with pytest.raises(InvalidTransitionError):
            advance(OrderStatus.BUILDING, Outcome.executed(RESULT))

    def test_transition_table_matches_advance(self):
        """Every transition advance() allows is listed in VALID_TRANSITIONS."""
        for status in OrderStatus:
            for outcome in ALL_OUTCOMES:
                try:
                    transition = advance(status, outcome)
                except InvalidTransitionError:
                    continue
                assert transition.next_status in VALID_TRANSITIONS[status]

    def test_terminal_statuses_have_no_exits(self):
        """Terminal statuses are flagged and have empty transition sets."""
        for status in OrderStatus:
            assert status.is_terminal == (VALID_TRANSITIONS[status] == set())

    def test_advance_is_deterministic(self):
        """Same inputs give the same transition."""
        first = advance(OrderStatus.ROUTING, Outcome.quoted(QUOTE))
        second = advance(OrderStatus.ROUTING, Outcome.quoted(QUOTE))
        assert first == second

    def test_failure_outcomes_set(self):
        """Only slippage, rejection and faults count as failures."""
        assert FAILURE_OUTCOMES == {OutcomeKind.SLIPPAGE, OutcomeKind.REJECTED, OutcomeKind.FAULT}


class TestTransitionMessages:
    """Audit messages recorded for each transition."""

    def test_routing_message(self):
        assert advance(OrderStatus.PENDING, Outcome.start()).message == "Finding best route..."

    def test_building_message_includes_quote(self):
        message = advance(OrderStatus.ROUTING, Outcome.quoted(QUOTE)).message
        assert message == "Quote received: Raydium @ 1.0"

    def test_submitted_message(self):
        message = advance(OrderStatus.BUILDING, Outcome.built()).message
        assert message == "Transaction submitted to network"

    def test_confirmed_message_includes_final_price(self):
        message = advance(OrderStatus.SUBMITTED, Outcome.executed(RESULT)).message
        assert message == "Swap confirmed. Final Price: 0.99"

    def test_slippage_message(self):
        message = advance(OrderStatus.SUBMITTED, Outcome.slippage("price moved 2%")).message
        assert message == "Slippage error: price moved 2%"

    def test_fault_message(self):
        message = advance(OrderStatus.ROUTING, Outcome.fault("RPC down")).message
        assert message.startswith("Network/System error: RPC down")

    def test_rejected_message(self):
        message = advance(OrderStatus.ROUTING, Outcome.rejected("Invalid amount 0")).message
        assert message == "Order rejected: Invalid amount 0"
