"""
Indicator maths on candle lists (numpy).
Pure functions: no clock, no randomness, inputs never mutated.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from trailstop.core.types import Candle

REGIME_TRENDING = "trending"
REGIME_RANGING = "ranging"
REGIME_VOLATILE = "volatile"


def candle_arrays(candles: Sequence[Candle]) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """(open, high, low, close, volume) as float64 arrays."""
    o = np.array([k.open for k in candles], dtype=float)
    h = np.array([k.high for k in candles], dtype=float)
    l = np.array([k.low for k in candles], dtype=float)
    c = np.array([k.close for k in candles], dtype=float)
    v = np.array([k.volume for k in candles], dtype=float)
    return o, h, l, c, v


def true_range(candles: Sequence[Candle]) -> np.ndarray:
    """TR for every candle after the first: max(h-l, |h-prevC|, |l-prevC|)."""
    if len(candles) < 2:
        return np.array([], dtype=float)
    _, h, l, c, _ = candle_arrays(candles)
    prev_close = c[:-1]
    hh, ll = h[1:], l[1:]
    return np.maximum.reduce([hh - ll, np.abs(hh - prev_close), np.abs(ll - prev_close)])


def atr(candles: Sequence[Candle], period: int) -> Optional[float]:
    """Simple mean of the last `period` true ranges. Needs period + 1 candles."""
    if len(candles) < period + 1:
        return None
    tr = true_range(candles)
    return float(tr[-period:].mean())


def sma(values: Sequence[float], period: int) -> Optional[float]:
    if len(values) < period:
        return None
    return float(np.mean(np.asarray(values, dtype=float)[-period:]))


def population_std(values: Sequence[float], period: int) -> Optional[float]:
    if len(values) < period:
        return None
    return float(np.std(np.asarray(values, dtype=float)[-period:], ddof=0))


def swing_high_low(candles: Sequence[Candle], lookback: int) -> Tuple[float, float]:
    window = candles[-lookback:]
    return max(c.high for c in window), min(c.low for c in window)


def trend_strength(closes: Sequence[float]) -> float:
    """R² of a least-squares line through closes vs index; 0 for flat or tiny series."""
    y = np.asarray(closes, dtype=float)
    n = len(y)
    if n < 2:
        return 0.0
    x = np.arange(n, dtype=float)
    x_mean, y_mean = x.mean(), y.mean()
    ss_tot = float(((y - y_mean) ** 2).sum())
    if ss_tot <= 1e-12:
        return 0.0
    slope = float(((x - x_mean) * (y - y_mean)).sum() / ((x - x_mean) ** 2).sum())
    intercept = y_mean - slope * x_mean
    ss_res = float(((y - (slope * x + intercept)) ** 2).sum())
    return max(0.0, min(1.0, 1.0 - ss_res / ss_tot))


def log_returns(closes: Sequence[float]) -> np.ndarray:
    arr = np.asarray(closes, dtype=float)
    if len(arr) < 2 or np.any(arr <= 0):
        return np.array([], dtype=float)
    return np.diff(np.log(arr))


def annualized_volatility(closes: Sequence[float], periods_per_year: float = 252.0) -> float:
    """Std of log returns scaled by sqrt(periods_per_year)."""
    rets = log_returns(closes)
    if len(rets) < 2:
        return 0.0
    return float(rets.std(ddof=0) * np.sqrt(periods_per_year))


def normalized_volatility(closes: Sequence[float], periods_per_year: float = 252.0) -> float:
    """Annualized volatility / 2, capped at 1."""
    return min(1.0, annualized_volatility(closes, periods_per_year) / 2.0)


def range_ratio(candles: Sequence[Candle]) -> float:
    """Mean bar range over the whole window range. High values mean bars overlap a lot."""
    if not candles:
        return 0.0
    _, h, l, _, _ = candle_arrays(candles)
    total = float(h.max() - l.min())
    if total <= 0:
        return 1.0
    return float((h - l).mean() / total)


def classify_regime(candles: Sequence[Candle], trending_r2: float = 0.6, ranging_ratio: float = 0.7) -> str:
    closes = [k.close for k in candles]
    if trend_strength(closes) > trending_r2:
        return REGIME_TRENDING
    if range_ratio(candles) > ranging_ratio:
        return REGIME_RANGING
    return REGIME_VOLATILE


def support_resistance_levels(candles: Sequence[Candle], lookback: int) -> Tuple[List[float], List[float]]:
    """
    Local extrema over the last `lookback` candles. A support low is strictly below
    the two lows on each side; a resistance high strictly above the two highs on each side.
    """
    window = candles[-lookback:]
    supports: List[float] = []
    resistances: List[float] = []
    for i in range(2, len(window) - 2):
        lo, hi = window[i].low, window[i].high
        neighbours = (window[i - 2], window[i - 1], window[i + 1], window[i + 2])
        if all(lo < n.low for n in neighbours):
            supports.append(lo)
        if all(hi > n.high for n in neighbours):
            resistances.append(hi)
    return supports, resistances


def pivot_levels(candle: Candle, pivot_type: str = "standard") -> Dict[str, float]:
    """P, R1, R2, S1, S2 from one completed candle."""
    h, l, c = candle.high, candle.low, candle.close
    rng = h - l
    if pivot_type == "woodie":
        p = (h + l + 2 * c) / 4.0
    else:
        p = (h + l + c) / 3.0

    if pivot_type == "fibonacci":
        return {
            "pivot": p,
            "r1": p + 0.382 * rng,
            "r2": p + 0.618 * rng,
            "s1": p - 0.382 * rng,
            "s2": p - 0.618 * rng,
        }
    if pivot_type == "camarilla":
        return {
            "pivot": p,
            "r1": c + 1.1 * rng / 12.0,
            "r2": c + 1.1 * rng / 6.0,
            "s1": c - 1.1 * rng / 12.0,
            "s2": c - 1.1 * rng / 6.0,
        }
    return {
        "pivot": p,
        "r1": 2 * p - l,
        "r2": p + rng,
        "s1": 2 * p - h,
        "s2": p - rng,
    }


def order_blocks(candles: Sequence[Candle], period: int, volume_multiplier: float) -> List[Candle]:
    """
    Candles in the last 2*period whose volume exceeds volume_multiplier x the mean
    volume of the `period` candles before them.
    """
    window = candles[-2 * period:]
    vols = np.array([c.volume for c in window], dtype=float)
    blocks: List[Candle] = []
    for i in range(period, len(window)):
        mean_vol = float(vols[i - period:i].mean())
        if mean_vol > 0 and vols[i] > volume_multiplier * mean_vol:
            blocks.append(window[i])
    return blocks


def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """Simple-average RSI over the last `period` changes. None when too short."""
    arr = np.asarray(closes, dtype=float)
    if len(arr) < period + 1:
        return None
    delta = np.diff(arr[-(period + 1):])
    avg_gain = float(np.clip(delta, 0, None).sum() / period)
    avg_loss = float(np.clip(-delta, 0, None).sum() / period)
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)
