"""
StopCalculator: candidate trailing-stop price for each strategy.
Stateless and deterministic. The ratchet is the caller's job.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional, Sequence

from trailstop.core.types import Candle, StrategyKind
from trailstop.strategies import indicators as ind
from trailstop.strategies.params import (
    FIBONACCI_EXTENSIONS,
    FIBONACCI_LEVELS,
    AtrParams,
    BollingerParams,
    DynamicParams,
    FibonacciParams,
    HybridParams,
    IchimokuParams,
    PercentageParams,
    PivotPointsParams,
    SmartMoneyParams,
    StrategyParams,
    SupportResistanceParams,
    VolumeProfileParams,
)

logger = logging.getLogger("trailstop.strategies")

FALLBACK_CONFIDENCE = 0.5
FALLBACK_INSUFFICIENT_DATA = "insufficient_data"
FALLBACK_CALCULATION_ERROR = "calculation_error"
FALLBACK_INVALID_RESULT = "invalid_result"

CONFIDENCE = {
    StrategyKind.PERCENTAGE: 0.7,
    StrategyKind.ATR: 0.8,
    StrategyKind.FIBONACCI: 0.85,
    StrategyKind.BOLLINGER_BANDS: 0.75,
    StrategyKind.VOLUME_PROFILE: 0.82,
    StrategyKind.ICHIMOKU: 0.83,
    StrategyKind.PIVOT_POINTS: 0.78,
    StrategyKind.SMART_MONEY: 0.88,
    StrategyKind.SUPPORT_RESISTANCE: 0.8,
    StrategyKind.HYBRID: 0.92,
}

# Dynamic confidence depends on the route taken.
DYNAMIC_CONFIDENCE = {
    StrategyKind.ATR: 0.88,
    StrategyKind.SUPPORT_RESISTANCE: 0.8,
    StrategyKind.BOLLINGER_BANDS: 0.75,
    StrategyKind.HYBRID: 0.82,
}


@dataclass(frozen=True)
class StopResult:
    """Candidate stop plus diagnostics."""
    stop_loss: float
    confidence: float
    strategy_used: StrategyKind
    support_level: Optional[float] = None
    resistance_level: Optional[float] = None
    indicators: Dict[str, Any] = field(default_factory=dict)
    fallback_reason: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_reason is not None


@dataclass(frozen=True)
class _Inputs:
    current_price: float
    entry_price: float
    is_long: bool
    candles: Sequence[Candle]
    highest_price: float
    lowest_price: float


def _finite_positive(value: Any) -> bool:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(v) and v > 0


class StopCalculator:
    """
    compute() dispatches on params.kind. Too few candles, a strategy exception or a
    non-finite/non-positive stop all degrade to the percentage stop (confidence 0.5).
    """

    def __init__(self, fallback_trailing_percent: float = 2.0):
        if not fallback_trailing_percent > 0:
            raise ValueError("fallback_trailing_percent must be > 0")
        self.fallback_trailing_percent = fallback_trailing_percent
        self._dispatch: Dict[StrategyKind, Callable[[Any, _Inputs], StopResult]] = {
            StrategyKind.PERCENTAGE: self._percentage,
            StrategyKind.ATR: self._atr,
            StrategyKind.FIBONACCI: self._fibonacci,
            StrategyKind.BOLLINGER_BANDS: self._bollinger,
            StrategyKind.VOLUME_PROFILE: self._volume_profile,
            StrategyKind.ICHIMOKU: self._ichimoku,
            StrategyKind.PIVOT_POINTS: self._pivot_points,
            StrategyKind.SMART_MONEY: self._smart_money,
            StrategyKind.SUPPORT_RESISTANCE: self._support_resistance,
            StrategyKind.DYNAMIC: self._dynamic,
            StrategyKind.HYBRID: self._hybrid,
        }

    def compute(
        self,
        params: StrategyParams,
        current_price: float,
        entry_price: float,
        is_long: bool,
        candles: Sequence[Candle] = (),
        highest_price: Optional[float] = None,
        lowest_price: Optional[float] = None,
    ) -> StopResult:
        if not _finite_positive(current_price):
            raise ValueError(f"current_price must be finite and > 0, got {current_price!r}")
        candles = tuple(candles)
        inputs = _Inputs(
            current_price=float(current_price),
            entry_price=float(entry_price),
            is_long=bool(is_long),
            candles=candles,
            highest_price=float(highest_price) if highest_price is not None else float(current_price),
            lowest_price=float(lowest_price) if lowest_price is not None else float(current_price),
        )
        kind = params.kind
        if len(candles) < params.min_candles:
            return self._fallback(inputs, kind, FALLBACK_INSUFFICIENT_DATA)
        try:
            result = self._dispatch[kind](params, inputs)
        except Exception as e:
            logger.warning("Stop calculation failed for %s, using percentage: %s", kind.value, e, exc_info=True)
            return self._fallback(inputs, kind, FALLBACK_CALCULATION_ERROR)
        if not _finite_positive(result.stop_loss):
            logger.warning("Strategy %s produced invalid stop %r, using percentage", kind.value, result.stop_loss)
            return self._fallback(inputs, kind, FALLBACK_INVALID_RESULT)
        return result

    # --- fallback ---

    def _fallback(self, inputs: _Inputs, requested: StrategyKind, reason: str) -> StopResult:
        base = self._percentage(PercentageParams(self.fallback_trailing_percent), inputs)
        indicators = dict(base.indicators)
        indicators["requested_strategy"] = requested.value
        return replace(base, confidence=FALLBACK_CONFIDENCE, indicators=indicators, fallback_reason=reason)

    # --- strategies ---

    def _percentage(self, params: PercentageParams, inputs: _Inputs) -> StopResult:
        p = inputs.current_price
        offset = p * params.trailing_percent / 100.0
        stop = p - offset if inputs.is_long else p + offset
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.PERCENTAGE],
            strategy_used=StrategyKind.PERCENTAGE,
            indicators={"trailing_percent": params.trailing_percent},
        )

    def _atr(self, params: AtrParams, inputs: _Inputs) -> StopResult:
        value = ind.atr(inputs.candles, params.atr_period)
        if value is None:
            return self._fallback(inputs, StrategyKind.ATR, FALLBACK_INSUFFICIENT_DATA)
        if inputs.is_long:
            stop = inputs.highest_price - value * params.atr_multiplier
        else:
            stop = inputs.lowest_price + value * params.atr_multiplier
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.ATR],
            strategy_used=StrategyKind.ATR,
            indicators={"atr": value, "atr_multiplier": params.atr_multiplier},
        )

    def _fibonacci(self, params: FibonacciParams, inputs: _Inputs) -> StopResult:
        high, low = ind.swing_high_low(inputs.candles, params.lookback_period)
        rng = high - low
        retracements = {str(level): high - rng * level for level in FIBONACCI_LEVELS}
        extensions = {str(ext): low + rng * ext for ext in FIBONACCI_EXTENSIONS}
        if inputs.is_long:
            stop = high - rng * params.level
        else:
            stop = low + rng * params.level
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.FIBONACCI],
            strategy_used=StrategyKind.FIBONACCI,
            support_level=low,
            resistance_level=high,
            indicators={
                "swing_high": high,
                "swing_low": low,
                "level": params.level,
                "retracements": retracements,
                "extensions": extensions,
            },
        )

    def _bollinger(self, params: BollingerParams, inputs: _Inputs) -> StopResult:
        closes = [c.close for c in inputs.candles]
        mid = ind.sma(closes, params.period)
        std = ind.population_std(closes, params.period)
        if mid is None or std is None:
            return self._fallback(inputs, StrategyKind.BOLLINGER_BANDS, FALLBACK_INSUFFICIENT_DATA)
        upper = mid + params.std_dev * std
        lower = mid - params.std_dev * std
        return StopResult(
            stop_loss=lower if inputs.is_long else upper,
            confidence=CONFIDENCE[StrategyKind.BOLLINGER_BANDS],
            strategy_used=StrategyKind.BOLLINGER_BANDS,
            support_level=lower,
            resistance_level=upper,
            indicators={"middle": mid, "upper": upper, "lower": lower, "std": std},
        )

    def _volume_profile(self, params: VolumeProfileParams, inputs: _Inputs) -> StopResult:
        window = inputs.candles[-params.period:]
        _, h, l, c, v = ind.candle_arrays(window)
        poc = float(c[int(v.argmax())])
        half = float(h.max() - l.min()) * params.value_area_percent / 100.0 / 2.0
        val, vah = poc - half, poc + half
        return StopResult(
            stop_loss=val if inputs.is_long else vah,
            confidence=CONFIDENCE[StrategyKind.VOLUME_PROFILE],
            strategy_used=StrategyKind.VOLUME_PROFILE,
            support_level=val,
            resistance_level=vah,
            indicators={"poc": poc, "value_area_high": vah, "value_area_low": val},
        )

    def _ichimoku(self, params: IchimokuParams, inputs: _Inputs) -> StopResult:
        candles = inputs.candles

        def midpoint(period: int) -> float:
            high, low = ind.swing_high_low(candles, period)
            return (high + low) / 2.0

        tenkan = midpoint(params.tenkan_period)
        kijun = midpoint(params.kijun_period)
        senkou_b = midpoint(params.senkou_period)
        senkou_a = (tenkan + kijun) / 2.0
        top, bottom = max(senkou_a, senkou_b), min(senkou_a, senkou_b)
        return StopResult(
            stop_loss=bottom if inputs.is_long else top,
            confidence=CONFIDENCE[StrategyKind.ICHIMOKU],
            strategy_used=StrategyKind.ICHIMOKU,
            support_level=bottom,
            resistance_level=top,
            indicators={"tenkan": tenkan, "kijun": kijun, "senkou_a": senkou_a, "senkou_b": senkou_b},
        )

    def _pivot_points(self, params: PivotPointsParams, inputs: _Inputs) -> StopResult:
        levels = ind.pivot_levels(inputs.candles[-1], params.pivot_type.value)
        price = inputs.current_price
        if inputs.is_long:
            below = [levels[k] for k in ("pivot", "s1", "s2") if levels[k] < price]
            stop = max(below) if below else levels["s1"]
        else:
            above = [levels[k] for k in ("pivot", "r1", "r2") if levels[k] > price]
            stop = min(above) if above else levels["r1"]
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.PIVOT_POINTS],
            strategy_used=StrategyKind.PIVOT_POINTS,
            support_level=levels["s1"],
            resistance_level=levels["r1"],
            indicators={"pivot_type": params.pivot_type.value, **levels},
        )

    def _smart_money(self, params: SmartMoneyParams, inputs: _Inputs) -> StopResult:
        blocks = ind.order_blocks(inputs.candles, params.order_block_period, params.volume_multiplier)
        price = inputs.current_price
        if inputs.is_long:
            candidates = [b.low for b in blocks if b.low < price]
            stop = max(candidates) if candidates else None
        else:
            candidates = [b.high for b in blocks if b.high > price]
            stop = min(candidates) if candidates else None
        if stop is None:
            return self._fallback(inputs, StrategyKind.SMART_MONEY, FALLBACK_INSUFFICIENT_DATA)
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.SMART_MONEY],
            strategy_used=StrategyKind.SMART_MONEY,
            support_level=stop if inputs.is_long else None,
            resistance_level=stop if not inputs.is_long else None,
            indicators={"order_blocks": len(blocks)},
        )

    def _support_resistance(self, params: SupportResistanceParams, inputs: _Inputs) -> StopResult:
        supports, resistances = ind.support_resistance_levels(inputs.candles, params.lookback_period)
        price = inputs.current_price
        below = [s for s in supports if s < price]
        above = [r for r in resistances if r > price]
        support = max(below) if below else None
        resistance = min(above) if above else None
        stop = support if inputs.is_long else resistance
        if stop is None:
            return self._fallback(inputs, StrategyKind.SUPPORT_RESISTANCE, FALLBACK_INSUFFICIENT_DATA)
        return StopResult(
            stop_loss=stop,
            confidence=CONFIDENCE[StrategyKind.SUPPORT_RESISTANCE],
            strategy_used=StrategyKind.SUPPORT_RESISTANCE,
            support_level=support,
            resistance_level=resistance,
            indicators={"supports": supports, "resistances": resistances},
        )

    def _dynamic(self, params: DynamicParams, inputs: _Inputs) -> StopResult:
        candles = inputs.candles
        regime = ind.classify_regime(candles[-params.regime_lookback:], params.trending_r2, params.ranging_ratio)
        recent_closes = [c.close for c in candles[-params.analysis_period:]]
        strength = ind.trend_strength(recent_closes)
        volatility = ind.normalized_volatility(recent_closes)

        if regime == ind.REGIME_TRENDING and strength > params.strong_trend:
            mult = min(params.atr_max_multiplier, max(params.atr_min_multiplier, params.atr_base_multiplier - strength))
            sub = self._atr(AtrParams(params.atr_period, mult), inputs)
            route = StrategyKind.ATR
        elif regime == ind.REGIME_RANGING or volatility < params.low_volatility:
            sub = self._support_resistance(SupportResistanceParams(params.sr_lookback), inputs)
            route = StrategyKind.SUPPORT_RESISTANCE
        elif volatility > params.high_volatility:
            sub = self._bollinger(BollingerParams(params.bollinger_period, params.bollinger_std_dev), inputs)
            limit = params.max_band_distance_percent / 100.0
            if inputs.is_long:
                stop = max(sub.stop_loss, inputs.current_price * (1 - limit))
            else:
                stop = min(sub.stop_loss, inputs.current_price * (1 + limit))
            sub = replace(sub, stop_loss=stop)
            route = StrategyKind.BOLLINGER_BANDS
        else:
            atr_stop = self._atr(AtrParams(params.atr_period, params.atr_base_multiplier), inputs).stop_loss
            fib_stop = self._fibonacci(params.fibonacci, inputs).stop_loss
            w_atr = strength * 0.6
            w_fib = (1 - strength) * 0.4
            stop = (w_atr * atr_stop + w_fib * fib_stop) / (w_atr + w_fib)
            sub = StopResult(
                stop_loss=stop,
                confidence=DYNAMIC_CONFIDENCE[StrategyKind.HYBRID],
                strategy_used=StrategyKind.DYNAMIC,
                indicators={"atr_stop": atr_stop, "fibonacci_stop": fib_stop, "atr_weight": w_atr, "fibonacci_weight": w_fib},
            )
            route = StrategyKind.HYBRID

        indicators = dict(sub.indicators)
        indicators.update({
            "selected_strategy": route.value if route != StrategyKind.HYBRID else "blend",
            "regime": regime,
            "trend_strength": strength,
            "volatility": volatility,
        })
        confidence = sub.confidence if sub.is_fallback else DYNAMIC_CONFIDENCE[route]
        return replace(
            sub,
            confidence=confidence,
            strategy_used=StrategyKind.DYNAMIC,
            indicators=indicators,
        )

    def _hybrid(self, params: HybridParams, inputs: _Inputs) -> StopResult:
        parts = (
            (params.atr, params.atr_weight),
            (params.fibonacci, params.fibonacci_weight),
            (params.volume_profile, params.volume_profile_weight),
        )
        total = 0.0
        weighted = 0.0
        live_weight = 0.0
        components: Dict[str, Any] = {}
        for sub_params, weight in parts:
            sub = self.compute(
                sub_params,
                inputs.current_price,
                inputs.entry_price,
                inputs.is_long,
                inputs.candles,
                inputs.highest_price,
                inputs.lowest_price,
            )
            components[sub_params.kind.value] = {
                "stop": sub.stop_loss,
                "weight": weight,
                "fallback_reason": sub.fallback_reason,
            }
            weighted += weight * sub.stop_loss
            total += weight
            if not sub.is_fallback:
                live_weight += weight
        if live_weight == 0:
            return self._fallback(inputs, StrategyKind.HYBRID, FALLBACK_INSUFFICIENT_DATA)
        # Scaled by the share of weight that came from real component stops.
        confidence = max(FALLBACK_CONFIDENCE, CONFIDENCE[StrategyKind.HYBRID] * live_weight / total)
        return StopResult(
            stop_loss=weighted / total,
            confidence=confidence,
            strategy_used=StrategyKind.HYBRID,
            indicators={"components": components},
        )


_default_calculator = StopCalculator()


def compute_stop(
    params: StrategyParams,
    current_price: float,
    entry_price: float,
    is_long: bool,
    candles: Sequence[Candle] = (),
    highest_price: Optional[float] = None,
    lowest_price: Optional[float] = None,
) -> StopResult:
    """compute() on a shared default calculator (2% fallback)."""
    return _default_calculator.compute(
        params, current_price, entry_price, is_long, candles, highest_price, lowest_price
    )
