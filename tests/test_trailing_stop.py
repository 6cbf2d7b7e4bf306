"""
Tests for the trailing-stop evaluator.

BUY trails the lowest price seen and fires on a rebound; SELL trails the
highest price seen and fires on a pullback.
"""

import pytest

from core.algo_order import OrderSide
from strategy.trailing_stop import TrailingStopState, evaluate_trailing_stop
from tests.helpers import make_trailing_order


def _run(order, prices):
    """Feed prices through the evaluator, carrying state like the scheduler does."""
    results = []
    state = dict(order.strategy_state)
    for price in prices:
        result = evaluate_trailing_stop(order, price, state)
        state = result.updated_state
        results.append(result)
    return results


class TestActivation:
    def test_activates_immediately_without_trigger(self):
        result = evaluate_trailing_stop(make_trailing_order(), 1.0, {})
        assert result.should_execute is False
        assert result.updated_state == {"is_activated": True, "extreme_price": 1.0}

    def test_buy_waits_for_trigger(self):
        order = make_trailing_order(side=OrderSide.BUY, trigger=0.5)
        result = evaluate_trailing_stop(order, 0.6, {})
        assert result.should_execute is False
        assert result.updated_state == {"is_activated": False, "extreme_price": None}

        armed = evaluate_trailing_stop(order, 0.5, result.updated_state)
        assert armed.updated_state["is_activated"] is True
        assert armed.updated_state["extreme_price"] == 0.5

    def test_sell_arms_at_or_above_trigger(self):
        order = make_trailing_order(side=OrderSide.SELL, trigger=0.7)
        assert evaluate_trailing_stop(order, 0.65, {}).updated_state["is_activated"] is False
        assert evaluate_trailing_stop(order, 0.72, {}).updated_state["is_activated"] is True


class TestBuyTrailing:
    def test_fires_on_rebound(self):
        results = _run(make_trailing_order(side=OrderSide.BUY, trail_percent=10), [1.0, 1.1])
        assert results[0].should_execute is False
        assert results[1].should_execute is True
        assert results[1].is_complete is True
        assert results[1].execute_size == pytest.approx(10.0)

    def test_follows_price_down(self):
        results = _run(make_trailing_order(side=OrderSide.BUY, trail_percent=10), [1.0, 0.8, 0.85, 0.88])
        assert results[1].updated_state["extreme_price"] == 0.8
        assert results[2].should_execute is False
        # 0.8 * 1.1 = 0.88
        assert results[3].should_execute is True

    def test_state_returned_on_every_evaluation(self):
        for result in _run(make_trailing_order(), [0.5, 0.49, 0.5]):
            assert result.updated_state is not None


class TestSellTrailing:
    def test_fires_on_pullback(self):
        results = _run(make_trailing_order(side=OrderSide.SELL, trail_percent=10), [1.0, 0.9])
        assert results[1].should_execute is True

    def test_tracks_highest_price(self):
        results = _run(make_trailing_order(side=OrderSide.SELL, trail_percent=10), [0.5, 0.6, 0.55, 0.54])
        assert results[1].updated_state["extreme_price"] == 0.6
        assert results[2].should_execute is False
        assert results[3].should_execute is True


def test_state_round_trips_through_dict():
    state = TrailingStopState.from_dict({"is_activated": True, "extreme_price": "0.42"})
    assert state.is_activated is True
    assert state.extreme_price == pytest.approx(0.42)
    assert TrailingStopState.from_dict(None) == TrailingStopState()
