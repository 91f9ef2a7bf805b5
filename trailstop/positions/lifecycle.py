"""
Trailing rules shared by the live manager and the backtest: ratchet, activation,
trigger, extremes, PnL. Work on anything with side/extreme/price fields (Position, BacktestTrade).
"""

from __future__ import annotations
import math
from typing import Optional, Tuple

from trailstop.core.errors import InvalidPositionError


def valid_price(price) -> bool:
    try:
        p = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(p) and p > 0


def require_positive(name: str, value) -> float:
    if not valid_price(value):
        raise InvalidPositionError(f"{name} must be finite and > 0, got {value!r}")
    return float(value)


def improves_protection(current_stop: Optional[float], candidate: float, is_long: bool) -> bool:
    """True when candidate is at least as protective as current_stop."""
    if current_stop is None:
        return True
    return candidate >= current_stop if is_long else candidate <= current_stop


def apply_ratchet(current_stop: Optional[float], candidate: float, is_long: bool) -> Tuple[float, bool]:
    """(stop to keep, accepted). A worse candidate leaves the current stop in place."""
    if improves_protection(current_stop, candidate, is_long):
        return candidate, True
    return current_stop, False


def bound_by_max_loss(stop: float, entry_price: float, max_loss_percent: float, is_long: bool) -> float:
    """Pull an initial stop in so it is never farther than max_loss_percent from entry."""
    if is_long:
        return max(stop, entry_price * (1 - max_loss_percent / 100.0))
    return min(stop, entry_price * (1 + max_loss_percent / 100.0))


def activation_reached(price: float, activation_price: Optional[float], is_long: bool) -> bool:
    if activation_price is None:
        return True
    return price >= activation_price if is_long else price <= activation_price


def stop_hit(price: float, stop: float, is_long: bool) -> bool:
    return price <= stop if is_long else price >= stop


def take_profit_hit(price: float, take_profit: Optional[float], is_long: bool) -> bool:
    if take_profit is None:
        return False
    return price >= take_profit if is_long else price <= take_profit


def update_extremes(holder, price: float) -> bool:
    """Widen highest/lowest with price. Returns True if the favourable extreme moved."""
    moved_high = price > holder.highest_price
    moved_low = price < holder.lowest_price
    if moved_high:
        holder.highest_price = price
    if moved_low:
        holder.lowest_price = price
    return moved_high if holder.is_long else moved_low


def pnl(entry_price: float, price: float, quantity: float, is_long: bool) -> Tuple[float, float]:
    """(pnl, pnl %) before fees."""
    diff = price - entry_price if is_long else entry_price - price
    return diff * quantity, diff / entry_price * 100.0


def update_performance(position, price: float) -> None:
    """Refresh current price, unrealized PnL, max profit % and max drawdown % (from peak profit)."""
    position.current_price = price
    position.unrealized_pnl, position.unrealized_pnl_percent = pnl(
        position.entry_price, price, position.quantity, position.is_long
    )
    if position.unrealized_pnl_percent > position.max_profit_percent:
        position.max_profit_percent = position.unrealized_pnl_percent
    drawdown = position.max_profit_percent - position.unrealized_pnl_percent
    if drawdown > position.max_drawdown_percent:
        position.max_drawdown_percent = drawdown
