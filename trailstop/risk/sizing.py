"""
Position sizing and volatility-adjusted trailing percent.
Quantity = risk_usd / stop_distance, capped at 10% of balance notional and at the requested size.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from trailstop.core.types import Candle
from trailstop.strategies import indicators as ind

logger = logging.getLogger("trailstop.risk")

MIN_QUANTITY = 0.001
MIN_STOP_DISTANCE_FRACTION = 0.001
MAX_BALANCE_FRACTION = 0.1
MIN_TRAILING_PERCENT = 0.5
MAX_TRAILING_PERCENT = 10.0


@dataclass
class MarketVolatility:
    """ATR and volatility% (std of simple returns, scaled to a day) for one symbol."""
    atr: float
    volatility_percent: float


def market_volatility(
    candles: Sequence[Candle],
    atr_period: int = 14,
    lookback: Optional[int] = None,
    periods_per_day: float = 24.0,
) -> Optional[MarketVolatility]:
    """None when there are not enough candles for the ATR."""
    window = list(candles[-lookback:]) if lookback else list(candles)
    value = ind.atr(candles, atr_period)
    if value is None or len(window) < 2:
        return None
    closes = np.array([c.close for c in window], dtype=float)
    returns = np.diff(closes) / closes[:-1]
    vol_pct = float(returns.std(ddof=0) * np.sqrt(periods_per_day) * 100.0)
    return MarketVolatility(atr=value, volatility_percent=vol_pct)


def optimal_quantity(
    entry_price: float,
    provided_quantity: float,
    account_balance: Optional[float] = None,
    risk_percent: Optional[float] = None,
    volatility: Optional[MarketVolatility] = None,
    atr_multiplier: float = 2.0,
) -> float:
    """
    Size a position so a stop-out loses about risk_percent of the balance.
    Without both balance and risk percent the provided quantity is returned unchanged.
    """
    if not account_balance or not risk_percent or entry_price <= 0:
        return provided_quantity

    risk_usd = account_balance * risk_percent / 100.0
    distances = [entry_price * MIN_STOP_DISTANCE_FRACTION]
    if volatility is not None:
        distances.append(volatility.atr * atr_multiplier)
        distances.append(entry_price * volatility.volatility_percent / 100.0)
    stop_distance = max(distances)

    qty = risk_usd / stop_distance
    max_qty = account_balance * MAX_BALANCE_FRACTION / entry_price
    qty = min(qty, max_qty, provided_quantity)
    if qty < MIN_QUANTITY:
        logger.debug("Sized quantity %.6f below minimum, using %.3f", qty, MIN_QUANTITY)
    return max(MIN_QUANTITY, qty)


def dynamic_trailing_percent(
    default_percent: float,
    volatility: Optional[MarketVolatility],
    volatility_multiplier: float = 1.5,
) -> float:
    """default + volatility% x multiplier, clamped to [0.5, 10]. Default when volatility is unknown."""
    if volatility is None:
        return default_percent
    pct = default_percent + volatility.volatility_percent * volatility_multiplier
    return max(MIN_TRAILING_PERCENT, min(MAX_TRAILING_PERCENT, pct))
