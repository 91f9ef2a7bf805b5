"""Unit tests for switching.rules and switching.evaluator."""

import pytest
from trailstop.core.errors import InvalidParameterError
from trailstop.core.types import Candle, Position, PositionStatus, Side, StrategyKind
from trailstop.strategies.calculator import StopCalculator
from trailstop.strategies.params import AtrParams, FibonacciParams, PercentageParams
from trailstop.switching.evaluator import SwitchRuleEvaluator
from trailstop.switching.rules import (
    Bounds,
    MarketConditionCondition,
    PerformanceCondition,
    PriceActionCondition,
    SwitchRule,
    TimeInPositionCondition,
    TrendCondition,
    VolatilityCondition,
    default_rules,
)

from conftest import T0, flat_candles, make_candles

ALWAYS = TimeInPositionCondition(minutes=Bounds(min=0))


def _position(strategy=StrategyKind.PERCENTAGE, pnl_percent=0.0, drawdown=0.0, stop=95.0, side=Side.LONG):
    return Position(
        id="pos-1",
        symbol="BTCUSDT",
        side=side,
        quantity=1.0,
        entry_price=100.0,
        current_price=100.0 + pnl_percent,
        highest_price=100.0 + max(pnl_percent, 0.0),
        lowest_price=100.0,
        strategy=strategy,
        params=PercentageParams(5.0),
        max_loss_percent=5.0,
        stop_loss_price=stop,
        status=PositionStatus.ACTIVE,
        created_at=T0,
        unrealized_pnl=pnl_percent,
        unrealized_pnl_percent=pnl_percent,
        max_drawdown_percent=drawdown,
        stop_history=[(T0, stop)],
    )


def _rule(rule_id, to, priority, condition=ALWAYS, frm=StrategyKind.PERCENTAGE, enabled=True):
    return SwitchRule(rule_id, rule_id, frm, to, condition, priority=priority, enabled=enabled)


def test_higher_priority_rule_wins():
    ev = SwitchRuleEvaluator(rules=[
        _rule("low", StrategyKind.ATR, 5),
        _rule("high", StrategyKind.FIBONACCI, 10),
    ])
    decision = ev.evaluate(_position(), [], now=T0)
    assert decision.should_switch
    assert decision.new_strategy == StrategyKind.FIBONACCI
    assert decision.matched_rule.id == "high"


def test_disabled_and_foreign_rules_are_skipped():
    ev = SwitchRuleEvaluator(rules=[
        _rule("off", StrategyKind.ATR, 10, enabled=False),
        _rule("other", StrategyKind.FIBONACCI, 9, frm=StrategyKind.ATR),
    ])
    assert not ev.evaluate(_position(), [], now=T0).should_switch
    assert ev.set_rule_enabled("off", True)
    assert ev.evaluate(_position(), [], now=T0).new_strategy == StrategyKind.ATR


def test_rule_table_edits():
    ev = SwitchRuleEvaluator(rules=[])
    ev.add_rule(_rule("a", StrategyKind.ATR, 1))
    ev.add_rule(_rule("a", StrategyKind.FIBONACCI, 3))
    assert [r.to_strategy for r in ev.rules()] == [StrategyKind.FIBONACCI]
    assert ev.remove_rule("a") is True
    assert ev.remove_rule("a") is False
    assert ev.set_rule_enabled("a", False) is False


def test_default_rules_sorted_by_priority():
    ev = SwitchRuleEvaluator()
    priorities = [r.priority for r in ev.rules()]
    assert priorities == sorted(priorities, reverse=True)
    assert {r.id for r in default_rules()} >= {"trending-to-atr", "drawdown-protection"}


def test_zero_is_a_real_bound():
    at_zero = PerformanceCondition(pnl_percent=Bounds(max=0.0))
    above_zero = PerformanceCondition(pnl_percent=Bounds(min=0.0))
    ev = SwitchRuleEvaluator(rules=[_rule("r", StrategyKind.ATR, 1, at_zero)])
    assert ev.evaluate(_position(pnl_percent=0.0), [], now=T0).should_switch
    assert not ev.evaluate(_position(pnl_percent=1.0), [], now=T0).should_switch
    ev = SwitchRuleEvaluator(rules=[_rule("r", StrategyKind.ATR, 1, above_zero)])
    assert not ev.evaluate(_position(pnl_percent=-1.0), [], now=T0).should_switch


def test_bounds_validation():
    assert Bounds().contains(-1e9)
    with pytest.raises(InvalidParameterError):
        Bounds(min=2.0, max=1.0)


def test_rule_to_same_strategy_rejected():
    with pytest.raises(InvalidParameterError):
        _rule("self", StrategyKind.PERCENTAGE, 1)


def test_drawdown_condition():
    cond = PerformanceCondition(drawdown_percent=Bounds(min=5.0))
    ev = SwitchRuleEvaluator(rules=[_rule("dd", StrategyKind.ATR, 1, cond)])
    assert ev.evaluate(_position(drawdown=6.0), [], now=T0).should_switch
    assert not ev.evaluate(_position(drawdown=4.0), [], now=T0).should_switch


def test_trend_needs_enough_candles():
    cond = TrendCondition(strength=Bounds(min=0.7))
    ev = SwitchRuleEvaluator(rules=[_rule("trend", StrategyKind.ATR, 1, cond)])
    rising = make_candles([100.0 + i for i in range(40)])
    assert not ev.evaluate(_position(), rising[:19], now=T0).should_switch
    assert ev.evaluate(_position(), rising, now=T0).should_switch


def test_volatility_condition_uses_annualised_volatility():
    cond = VolatilityCondition(level=Bounds(min=1.2))
    ev = SwitchRuleEvaluator(rules=[_rule("vol", StrategyKind.BOLLINGER_BANDS, 1, cond)])
    assert not ev.evaluate(_position(), flat_candles(30), now=T0).should_switch
    # 10% swings: log-return std ~0.095, x sqrt(252) ~ 1.5
    choppy = make_candles([100.0 if i % 2 == 0 else 110.0 for i in range(30)])
    assert ev.evaluate(_position(), choppy, now=T0).should_switch


def test_market_condition_regime():
    cond = MarketConditionCondition(regime="trending")
    ev = SwitchRuleEvaluator(rules=[_rule("mc", StrategyKind.ATR, 1, cond)])
    rising = make_candles([100.0 + i for i in range(30)], spread=0.2)
    assert ev.evaluate(_position(), rising, now=T0).should_switch
    with pytest.raises(InvalidParameterError):
        MarketConditionCondition(regime="sideways")


def test_price_action_direction():
    up = PriceActionCondition(direction="up", percentage=3.0, lookback=15)
    down = PriceActionCondition(direction="down", percentage=3.0, lookback=15)
    rising = make_candles([100.0 + 0.5 * i for i in range(15)])  # +7%
    ev_up = SwitchRuleEvaluator(rules=[_rule("up", StrategyKind.ATR, 1, up)])
    ev_down = SwitchRuleEvaluator(rules=[_rule("down", StrategyKind.ATR, 1, down)])
    assert ev_up.evaluate(_position(), rising, now=T0).should_switch
    assert not ev_down.evaluate(_position(), rising, now=T0).should_switch
    assert not ev_up.evaluate(_position(), rising[:1], now=T0).should_switch


def test_time_in_position():
    cond = TimeInPositionCondition(minutes=Bounds(min=30))
    ev = SwitchRuleEvaluator(rules=[_rule("t", StrategyKind.ATR, 1, cond)])
    assert not ev.evaluate(_position(), [], now=T0 + 29 * 60_000).should_switch
    assert ev.evaluate(_position(), [], now=T0 + 30 * 60_000).should_switch


def test_execute_switch_records_history_and_leaves_input_untouched():
    ev = SwitchRuleEvaluator(rules=[])
    before = _position(pnl_percent=10.0, stop=95.0)
    # flat window: fibonacci stop = 100 - 0 * 0.618 = 100 > 95
    candles = [Candle(T0 + i, 100, 100, 100, 100, 1) for i in range(20)]
    updated = ev.execute_switch(
        before, StrategyKind.FIBONACCI, FibonacciParams(), "profit", candles, StopCalculator(), now=T0 + 1
    )
    assert updated.strategy == StrategyKind.FIBONACCI
    assert updated.stop_loss_price == pytest.approx(100.0)
    assert updated.stop_history[-1] == (T0 + 1, pytest.approx(100.0))
    assert before.strategy == StrategyKind.PERCENTAGE
    assert before.stop_loss_price == 95.0

    (event,) = ev.history("pos-1")
    assert event.from_strategy == StrategyKind.PERCENTAGE
    assert event.to_strategy == StrategyKind.FIBONACCI
    assert event.pnl_percent_at_switch == 10.0
    assert event.market["price"] == 110.0
    assert ev.stats() == {"percentage->fibonacci": 1}
    ev.clear_history()
    assert ev.history() == []


def test_execute_switch_never_loosens_stop():
    ev = SwitchRuleEvaluator(rules=[])
    before = _position(stop=99.5)
    updated = ev.execute_switch(
        before, StrategyKind.ATR, AtrParams(), "test", [], StopCalculator(), now=T0
    )
    # ATR falls back to 2% of 100 = 98, looser than 99.5
    assert updated.stop_loss_price == 99.5
    assert updated.stop_history == before.stop_history


def test_execute_switch_rejects_mismatched_params():
    ev = SwitchRuleEvaluator(rules=[])
    with pytest.raises(ValueError):
        ev.execute_switch(_position(), StrategyKind.ATR, PercentageParams(), "x", [], StopCalculator(), now=T0)
