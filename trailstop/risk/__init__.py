"""Risk: position sizing and volatility-adjusted trailing."""

from trailstop.risk.sizing import (
    MarketVolatility,
    dynamic_trailing_percent,
    market_volatility,
    optimal_quantity,
)

__all__ = ["MarketVolatility", "market_volatility", "optimal_quantity", "dynamic_trailing_percent"]
