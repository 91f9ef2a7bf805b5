"""Backtesting: candle-by-candle replay of the trailing stop with fees."""

from trailstop.backtesting.engine import (
    BacktestConfig,
    BacktestResult,
    BacktestRunner,
    DrawdownPoint,
    EntryCondition,
    EquityPoint,
    MonthlyReturn,
    run_backtests,
)

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "BacktestRunner",
    "DrawdownPoint",
    "EntryCondition",
    "EquityPoint",
    "MonthlyReturn",
    "run_backtests",
]
