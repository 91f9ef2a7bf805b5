"""Unit tests for analytics.metrics."""

import pytest
from trailstop.analytics.metrics import (
    compute_performance,
    expectancy,
    holding_stats,
    max_drawdown,
    max_drawdown_amount,
    period_returns,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    trailing_distance_percent,
    trailing_efficiency,
    win_rate,
)
from trailstop.core.types import BacktestTrade, Side, StrategyKind

HOUR_MS = 3_600_000


def _trade(pnl, reason="trailing_stop", hours=2, side=Side.LONG, high=110.0, low=100.0, stop=104.5, fees=0.1):
    t = BacktestTrade(
        id="t",
        side=side,
        strategy=StrategyKind.PERCENTAGE,
        entry_time=0,
        entry_price=100.0,
        quantity=1.0,
        highest_price=high,
        lowest_price=low,
        stop_price=stop,
        entry_reason="always",
        volume=1.0,
    )
    t.exit_time = hours * HOUR_MS
    t.exit_reason = reason
    t.realized_pnl = pnl
    t.fees = fees
    t.status = "stopped" if reason == "trailing_stop" else "closed"
    return t


def test_sharpe_ratio_empty():
    assert sharpe_ratio([]) == 0.0


def test_sharpe_ratio_constant():
    assert sharpe_ratio([0.01] * 10) == 0.0  # zero std


def test_sortino_without_losses_matches_sharpe():
    rets = [0.01, 0.02, 0.03]
    assert sortino_ratio(rets) == pytest.approx(sharpe_ratio(rets))


def test_win_rate():
    assert win_rate([1, -1, 1, 1]) == 0.75
    assert win_rate([]) == 0.0


def test_profit_factor():
    assert profit_factor([10, -5, 10, -5]) == 2.0
    assert profit_factor([10, 10]) == float("inf")
    assert profit_factor([-5, -5]) == 0.0


def test_expectancy():
    assert expectancy([10, -5, 5]) == pytest.approx(10 / 3)
    assert expectancy([]) == 0.0


def test_max_drawdown():
    # equity 1 -> 1.2 -> 1.0 -> 1.1  =>  peak 1.2, dd (1.0-1.2)/1.2 = -16.67%
    cum = [1.0, 1.2, 1.0, 1.1]
    assert max_drawdown(cum) == pytest.approx(-16.666, rel=0.01)
    assert max_drawdown_amount([100, 120, 90, 130, 125]) == pytest.approx(30.0)
    assert max_drawdown_amount([]) == 0.0


def test_period_returns():
    assert period_returns([100.0, 110.0, 99.0]) == pytest.approx([0.1, -0.1])
    assert period_returns([100.0]) == []


def test_holding_stats():
    assert holding_stats([1.0, 3.0, 2.0]) == (2.0, 3.0, 1.0)
    assert holding_stats([]) == (0.0, 0.0, 0.0)


def test_trailing_distance_and_efficiency():
    assert trailing_distance_percent(_trade(5.0)) == pytest.approx(5.0)
    short = _trade(5.0, side=Side.SHORT, low=100.0, stop=102.0)
    assert trailing_distance_percent(short) == pytest.approx(2.0)
    trades = [_trade(5.0), _trade(-2.0), _trade(3.0, reason="take_profit")]
    # only trailing-stop exits count
    assert trailing_efficiency(trades) == 0.5
    assert trailing_efficiency([]) == 0.0


def test_compute_performance():
    trades = [_trade(10.0, hours=1), _trade(-5.0, hours=3), _trade(15.0, reason="take_profit", hours=2), _trade(-3.0, hours=6)]
    equity = [1010.0, 1005.0, 1020.0, 1017.0]
    m = compute_performance(trades, equity, initial_capital=1000.0)
    assert m.total_trades == 4
    assert m.winning_trades == 2
    assert m.losing_trades == 2
    assert m.expectancy == pytest.approx(4.25)
    assert m.win_rate == 0.5
    assert m.total_return == pytest.approx(17.0)
    assert m.total_return_percent == pytest.approx(1.7)
    assert m.avg_win == pytest.approx(12.5)
    assert m.avg_loss == pytest.approx(4.0)
    assert m.max_drawdown == pytest.approx(5.0)
    assert m.max_drawdown_percent > 0
    assert m.avg_holding_hours == pytest.approx(3.0)
    assert m.max_holding_hours == 6.0
    assert m.min_holding_hours == 1.0
    assert m.total_fees == pytest.approx(0.4)
    assert m.trailing_efficiency == pytest.approx(1 / 3)


def test_compute_performance_no_trades():
    m = compute_performance([], [], initial_capital=1000.0)
    assert m.total_trades == 0
    assert m.total_return == 0.0
    assert m.sharpe_ratio == 0.0
    assert m.max_drawdown == 0.0
