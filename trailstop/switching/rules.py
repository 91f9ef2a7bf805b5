"""
Strategy switch rules: conditions, SwitchRule, and the default rule table.
Volatility values are annualised log-return std (1.2 = 120% a year).
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import ClassVar, List, Optional, Union

from trailstop.core.errors import InvalidParameterError
from trailstop.core.types import StrategyKind
from trailstop.strategies.indicators import REGIME_RANGING, REGIME_TRENDING, REGIME_VOLATILE


@dataclass(frozen=True)
class Bounds:
    """Inclusive [min, max]. None means unbounded on that side; 0 is a real bound."""
    min: Optional[float] = None
    max: Optional[float] = None

    def __post_init__(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise InvalidParameterError(f"Bounds min {self.min} > max {self.max}")

    def contains(self, value: float) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class TrendCondition:
    kind: ClassVar[str] = "trend"
    strength: Bounds
    min_candles: int = 20


@dataclass(frozen=True)
class VolatilityCondition:
    kind: ClassVar[str] = "volatility"
    level: Bounds
    min_candles: int = 20


@dataclass(frozen=True)
class PerformanceCondition:
    """Every configured bound must hold."""
    kind: ClassVar[str] = "performance"
    pnl_percent: Optional[Bounds] = None
    drawdown_percent: Optional[Bounds] = None


@dataclass(frozen=True)
class MarketConditionCondition:
    kind: ClassVar[str] = "market_condition"
    regime: str
    volatility: Optional[Bounds] = None

    def __post_init__(self):
        if self.regime not in (REGIME_TRENDING, REGIME_RANGING, REGIME_VOLATILE):
            raise InvalidParameterError(f"unknown regime {self.regime!r}")


@dataclass(frozen=True)
class PriceActionCondition:
    """Close-to-close % move over the last `lookback` candles."""
    kind: ClassVar[str] = "price_action"
    direction: str
    percentage: float
    lookback: int = 15

    def __post_init__(self):
        if self.direction not in ("up", "down"):
            raise InvalidParameterError(f"direction must be 'up' or 'down', got {self.direction!r}")
        if self.lookback < 2:
            raise InvalidParameterError("lookback must be >= 2")


@dataclass(frozen=True)
class TimeInPositionCondition:
    kind: ClassVar[str] = "time_in_position"
    minutes: Bounds


SwitchCondition = Union[
    TrendCondition,
    VolatilityCondition,
    PerformanceCondition,
    MarketConditionCondition,
    PriceActionCondition,
    TimeInPositionCondition,
]


@dataclass(frozen=True)
class SwitchRule:
    id: str
    name: str
    from_strategy: StrategyKind
    to_strategy: StrategyKind
    condition: SwitchCondition
    priority: int = 0
    enabled: bool = True

    def __post_init__(self):
        object.__setattr__(self, "from_strategy", StrategyKind(self.from_strategy))
        object.__setattr__(self, "to_strategy", StrategyKind(self.to_strategy))
        if self.from_strategy == self.to_strategy:
            raise InvalidParameterError(f"rule {self.id} switches {self.from_strategy.value} to itself")


def default_rules() -> List[SwitchRule]:
    return [
        SwitchRule(
            id="drawdown-protection",
            name="Switch to conservative percentage trailing on high drawdown",
            from_strategy=StrategyKind.SMART_MONEY,
            to_strategy=StrategyKind.PERCENTAGE,
            condition=PerformanceCondition(drawdown_percent=Bounds(min=5.0)),
            priority=15,
        ),
        SwitchRule(
            id="profit-protection",
            name="Switch to Fibonacci trailing on high profit",
            from_strategy=StrategyKind.ATR,
            to_strategy=StrategyKind.FIBONACCI,
            condition=PerformanceCondition(pnl_percent=Bounds(min=10.0)),
            priority=12,
        ),
        SwitchRule(
            id="breakout-to-dynamic",
            name="Switch to dynamic on upside breakout",
            from_strategy=StrategyKind.SUPPORT_RESISTANCE,
            to_strategy=StrategyKind.DYNAMIC,
            condition=PriceActionCondition(direction="up", percentage=3.0, lookback=15),
            priority=11,
        ),
        SwitchRule(
            id="trending-to-atr",
            name="Switch to ATR in strong trends",
            from_strategy=StrategyKind.PERCENTAGE,
            to_strategy=StrategyKind.ATR,
            condition=TrendCondition(strength=Bounds(min=0.7)),
            priority=10,
        ),
        SwitchRule(
            id="ranging-to-support-resistance",
            name="Switch to support/resistance in ranging markets",
            from_strategy=StrategyKind.ATR,
            to_strategy=StrategyKind.SUPPORT_RESISTANCE,
            condition=MarketConditionCondition(regime=REGIME_RANGING, volatility=Bounds(max=0.6)),
            priority=9,
        ),
        SwitchRule(
            id="high-volatility-to-bollinger",
            name="Switch to Bollinger Bands in high volatility",
            from_strategy=StrategyKind.PERCENTAGE,
            to_strategy=StrategyKind.BOLLINGER_BANDS,
            condition=VolatilityCondition(level=Bounds(min=1.2)),
            priority=8,
        ),
    ]
