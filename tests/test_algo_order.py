"""
Tests for the algo order model: lifecycle transitions, fills and serialization.
"""

from datetime import timedelta

import pytest

from core.algo_order import (
    AlgoOrder,
    AlgoOrderStatus,
    AlgoOrderType,
    Fill,
    OrderSide,
    StopLossParams,
    TWAPParams,
)
from tests.helpers import START, TOKEN_ID, make_stop_order, make_trailing_order, make_twap_order


class TestConstruction:
    def test_defaults(self):
        order = make_stop_order(stop=0.4)
        assert order.status == AlgoOrderStatus.ACTIVE
        assert order.executed_size == 0
        assert order.remaining_size() == 10.0

    def test_rejects_empty_token(self):
        with pytest.raises(ValueError):
            make_stop_order(stop=0.4, token_id="  ")

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValueError):
            make_stop_order(stop=0.4, size=0)

    def test_params_must_match_type(self):
        with pytest.raises(TypeError):
            AlgoOrder(
                id="x",
                type=AlgoOrderType.TWAP,
                side=OrderSide.BUY,
                token_id=TOKEN_ID,
                size=1,
                params=StopLossParams(stop_loss_price=0.5),
            )

    def test_take_profit_alias(self):
        assert AlgoOrderType.from_string("take_profit") == AlgoOrderType.STOP_LOSS
        assert OrderSide.from_string(" sell ") == OrderSide.SELL


class TestTransitions:
    def test_pause_resume_cycle(self):
        order = make_stop_order(stop=0.4)
        assert order.transition(AlgoOrderStatus.PAUSED, now=START)
        assert order.transition(AlgoOrderStatus.ACTIVE, now=START)

    def test_terminal_states_are_final(self):
        order = make_stop_order(stop=0.4)
        assert order.transition(AlgoOrderStatus.CANCELLED, now=START)
        assert order.completed_at == START
        assert order.is_terminal()
        assert not order.transition(AlgoOrderStatus.ACTIVE)
        assert order.status == AlgoOrderStatus.CANCELLED

    def test_paused_cannot_fail(self):
        order = make_stop_order(stop=0.4)
        order.transition(AlgoOrderStatus.PAUSED)
        assert not order.can_transition(AlgoOrderStatus.FAILED)

    def test_same_status_is_noop(self):
        order = make_stop_order(stop=0.4)
        before = order.updated_at
        assert order.transition(AlgoOrderStatus.ACTIVE, now=START + timedelta(hours=1))
        assert order.updated_at == before

    def test_error_recorded_on_transition(self):
        order = make_stop_order(stop=0.4)
        order.transition(AlgoOrderStatus.FAILED, error="market closed")
        assert order.last_error == "market closed"


class TestFills:
    def test_fill_advances_executed_size_and_resets_failures(self):
        order = make_twap_order()
        order.record_failure("timeout", now=START)
        order.record_fill(Fill(price=0.5, size=4.0, timestamp=START, exchange_order_id="ex-1"), now=START)

        assert order.executed_size == 4.0
        assert order.remaining_size() == 6.0
        assert order.consecutive_failures == 0
        assert order.last_error is None
        assert order.exchange_order_id == "ex-1"
        assert order.fill_percentage() == pytest.approx(40.0)

    def test_overfill_rejected(self):
        order = make_twap_order(size=5.0)
        with pytest.raises(ValueError, match="exceeds remaining"):
            order.record_fill(Fill(price=0.5, size=5.5, timestamp=START))
        assert order.executed_size == 0

    def test_empty_fill_rejected(self):
        with pytest.raises(ValueError):
            make_twap_order().record_fill(Fill(price=0.5, size=0, timestamp=START))

    def test_average_price_is_size_weighted(self):
        order = make_twap_order()
        order.record_fill(Fill(price=0.4, size=2.0, timestamp=START))
        order.record_fill(Fill(price=0.6, size=6.0, timestamp=START))
        assert order.average_price() == pytest.approx(0.55)

    def test_uncounted_failure(self):
        order = make_twap_order()
        order.record_failure("Insufficient USDC balance", count=False)
        assert order.consecutive_failures == 0
        assert order.last_error == "Insufficient USDC balance"
        assert len(order.failure_history) == 1

    def test_failure_history_is_bounded(self):
        order = make_twap_order()
        for i in range(AlgoOrder.MAX_FAILURE_HISTORY + 5):
            order.record_failure(f"error {i}")
        assert len(order.failure_history) == AlgoOrder.MAX_FAILURE_HISTORY
        assert order.failure_history[-1]["error"] == f"error {AlgoOrder.MAX_FAILURE_HISTORY + 4}"


class TestSerialization:
    def test_round_trip_preserves_state(self):
        order = make_trailing_order(trigger=0.3)
        order.strategy_state = {"is_activated": True, "extreme_price": 0.31}
        order.record_fill(Fill(price=0.33, size=1.0, timestamp=START, reason="Trailing stop at 0.3410"))

        restored = AlgoOrder.from_dict(order.to_dict())

        assert restored.params == order.params
        assert restored.strategy_state == order.strategy_state
        assert restored.execution_history == order.execution_history
        assert restored.executed_size == 1.0

    def test_twap_start_time_parsed(self):
        data = make_twap_order().to_dict()
        data["params"]["start_time"] = "2026-01-01T12:00:00Z"
        restored = AlgoOrder.from_dict(data)
        assert isinstance(restored.params, TWAPParams)
        assert restored.params.start_time == START

    def test_summary_fields(self):
        summary = make_twap_order().summary()
        assert summary["type"] == "TWAP"
        assert summary["status"] == "ACTIVE"
        assert summary["fill_percentage"] == 0.0
        assert summary["execution_history"] == []
