"""Analytics: performance metrics (Sharpe, Sortino, MDD, win rate, trailing efficiency, etc.)."""

from trailstop.analytics.metrics import (
    BacktestPerformance,
    compute_performance,
    expectancy,
    holding_stats,
    max_drawdown,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    trailing_efficiency,
    win_rate,
)

__all__ = [
    "BacktestPerformance",
    "compute_performance",
    "sharpe_ratio",
    "sortino_ratio",
    "max_drawdown",
    "win_rate",
    "profit_factor",
    "expectancy",
    "holding_stats",
    "trailing_efficiency",
]
