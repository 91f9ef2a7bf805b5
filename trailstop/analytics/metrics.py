"""
Performance metrics: Sharpe, Sortino, max drawdown, win rate, profit factor, expectancy,
plus holding-period and trailing-stop statistics for backtests.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from trailstop.core.types import BacktestTrade


@dataclass
class BacktestPerformance:
    """Aggregate backtest performance. Drawdowns and avg_loss are positive numbers."""
    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    total_return: float
    total_return_percent: float
    avg_win: float
    avg_loss: float
    profit_factor: float
    expectancy: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    max_drawdown_percent: float
    avg_holding_hours: float
    max_holding_hours: float
    min_holding_hours: float
    avg_trailing_distance_percent: float
    max_trailing_distance_percent: float
    trailing_efficiency: float
    total_fees: float


def sharpe_ratio(returns: List[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Annualized Sharpe. returns = list of period returns."""
    if not returns:
        return 0.0
    arr = np.array(returns)
    excess = arr - risk_free_rate / periods_per_year
    if excess.std() <= 1e-12:
        return 0.0
    return float(np.sqrt(periods_per_year) * excess.mean() / excess.std())


def sortino_ratio(returns: List[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Annualized Sortino (downside deviation)."""
    if not returns:
        return 0.0
    arr = np.array(returns)
    excess = arr - risk_free_rate / periods_per_year
    downside = arr[arr < 0]
    if len(downside) == 0 or downside.std() <= 1e-12:
        return sharpe_ratio(returns, risk_free_rate, periods_per_year)
    return float(np.sqrt(periods_per_year) * excess.mean() / downside.std())


def max_drawdown(cumulative_returns: List[float]) -> float:
    """Max drawdown in percent, negative (e.g. -15.0 = 15% below peak)."""
    if not cumulative_returns:
        return 0.0
    arr = np.array(cumulative_returns)
    peak = np.maximum.accumulate(arr)
    dd = (arr - peak) / np.where(peak != 0, peak, 1)
    return float(np.min(dd)) * 100.0


def max_drawdown_amount(equity: Sequence[float]) -> float:
    """Largest peak-to-trough fall in currency, positive."""
    if not equity:
        return 0.0
    arr = np.array(equity, dtype=float)
    return float((np.maximum.accumulate(arr) - arr).max())


def period_returns(equity: Sequence[float]) -> List[float]:
    """Simple returns between consecutive equity points."""
    arr = np.array(equity, dtype=float)
    if len(arr) < 2:
        return []
    prev = np.where(arr[:-1] != 0, arr[:-1], 1)
    return ((arr[1:] - arr[:-1]) / prev).tolist()


def win_rate(pnls: List[float]) -> float:
    """Fraction of trades with positive PnL."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: List[float]) -> float:
    """Gross profit / gross loss. inf if there are wins and no losses."""
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def expectancy(pnls: List[float]) -> float:
    """Average PnL per trade."""
    if not pnls:
        return 0.0
    return sum(pnls) / len(pnls)


def holding_stats(hours: List[float]) -> Tuple[float, float, float]:
    """(avg, max, min) holding period in hours."""
    if not hours:
        return 0.0, 0.0, 0.0
    return sum(hours) / len(hours), max(hours), min(hours)


def trailing_distance_percent(trade: BacktestTrade) -> float:
    """Gap between the favourable extreme and the final stop, as % of the extreme."""
    extreme = trade.highest_price if trade.is_long else trade.lowest_price
    if extreme <= 0:
        return 0.0
    return abs(extreme - trade.stop_price) / extreme * 100.0


def trailing_efficiency(trades: Sequence[BacktestTrade]) -> float:
    """Share of trailing-stop exits that closed in profit."""
    stopped = [t for t in trades if t.exit_reason == "trailing_stop"]
    if not stopped:
        return 0.0
    return sum(1 for t in stopped if (t.realized_pnl or 0.0) > 0) / len(stopped)


def compute_performance(
    trades: Sequence[BacktestTrade],
    equity: Sequence[float],
    initial_capital: float,
    periods_per_year: float = 252.0,
    risk_free_rate: float = 0.0,
) -> BacktestPerformance:
    """
    Performance from closed trades and the per-candle equity curve.
    Sharpe/Sortino use per-candle equity returns annualised with periods_per_year.
    """
    closed = [t for t in trades if t.realized_pnl is not None]
    pnls = [t.realized_pnl for t in closed]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    final_equity = equity[-1] if equity else initial_capital
    total_return = final_equity - initial_capital
    curve = [initial_capital] + list(equity)
    rets = period_returns(curve)
    avg_hold, max_hold, min_hold = holding_stats([t.holding_hours for t in closed])
    distances = [trailing_distance_percent(t) for t in closed]
    return BacktestPerformance(
        total_trades=len(closed),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=win_rate(pnls),
        total_return=total_return,
        total_return_percent=total_return / initial_capital * 100.0 if initial_capital else 0.0,
        avg_win=sum(wins) / len(wins) if wins else 0.0,
        avg_loss=-sum(losses) / len(losses) if losses else 0.0,
        profit_factor=profit_factor(pnls),
        expectancy=expectancy(pnls),
        sharpe_ratio=sharpe_ratio(rets, risk_free_rate, periods_per_year),
        sortino_ratio=sortino_ratio(rets, risk_free_rate, periods_per_year),
        max_drawdown=max_drawdown_amount(curve),
        max_drawdown_percent=-max_drawdown(curve),
        avg_holding_hours=avg_hold,
        max_holding_hours=max_hold,
        min_holding_hours=min_hold,
        avg_trailing_distance_percent=sum(distances) / len(distances) if distances else 0.0,
        max_trailing_distance_percent=max(distances) if distances else 0.0,
        trailing_efficiency=trailing_efficiency(closed),
        total_fees=sum(t.fees for t in closed),
    )
