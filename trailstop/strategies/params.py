"""
Strategy parameters: one frozen dataclass per StrategyKind.
The calculator dispatches on `kind`; each variant only carries its own fields.
"""

from __future__ import annotations
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Mapping, Optional, Union

from trailstop.core.errors import InvalidParameterError
from trailstop.core.types import StrategyKind

if TYPE_CHECKING:
    from trailstop.core.config import Settings

FIBONACCI_LEVELS = (0.236, 0.382, 0.5, 0.618, 0.786)
FIBONACCI_EXTENSIONS = (1.272, 1.618)


class PivotType(str, Enum):
    STANDARD = "standard"
    FIBONACCI = "fibonacci"
    WOODIE = "woodie"
    CAMARILLA = "camarilla"


def _require_period(name: str, value: int) -> None:
    if int(value) != value or value < 1:
        raise InvalidParameterError(f"{name} must be a positive integer, got {value!r}")


def _require_positive(name: str, value: float) -> None:
    if not value > 0:
        raise InvalidParameterError(f"{name} must be > 0, got {value!r}")


@dataclass(frozen=True)
class PercentageParams:
    kind: ClassVar[StrategyKind] = StrategyKind.PERCENTAGE
    trailing_percent: float = 2.0

    def __post_init__(self):
        _require_positive("trailing_percent", self.trailing_percent)
        if self.trailing_percent >= 100:
            raise InvalidParameterError("trailing_percent must be < 100")

    @property
    def min_candles(self) -> int:
        return 0


@dataclass(frozen=True)
class AtrParams:
    kind: ClassVar[StrategyKind] = StrategyKind.ATR
    atr_period: int = 14
    atr_multiplier: float = 2.0

    def __post_init__(self):
        _require_period("atr_period", self.atr_period)
        _require_positive("atr_multiplier", self.atr_multiplier)

    @property
    def min_candles(self) -> int:
        return self.atr_period + 1


@dataclass(frozen=True)
class FibonacciParams:
    kind: ClassVar[StrategyKind] = StrategyKind.FIBONACCI
    level: float = 0.618
    lookback_period: int = 20

    def __post_init__(self):
        if self.level not in FIBONACCI_LEVELS:
            raise InvalidParameterError(f"fibonacci level must be one of {FIBONACCI_LEVELS}, got {self.level!r}")
        _require_period("lookback_period", self.lookback_period)

    @property
    def min_candles(self) -> int:
        return self.lookback_period


@dataclass(frozen=True)
class BollingerParams:
    kind: ClassVar[StrategyKind] = StrategyKind.BOLLINGER_BANDS
    period: int = 20
    std_dev: float = 2.0

    def __post_init__(self):
        _require_period("period", self.period)
        _require_positive("std_dev", self.std_dev)

    @property
    def min_candles(self) -> int:
        return self.period


@dataclass(frozen=True)
class VolumeProfileParams:
    kind: ClassVar[StrategyKind] = StrategyKind.VOLUME_PROFILE
    period: int = 50
    value_area_percent: float = 70.0

    def __post_init__(self):
        _require_period("period", self.period)
        _require_positive("value_area_percent", self.value_area_percent)
        if self.value_area_percent > 100:
            raise InvalidParameterError("value_area_percent must be <= 100")

    @property
    def min_candles(self) -> int:
        return self.period


@dataclass(frozen=True)
class IchimokuParams:
    kind: ClassVar[StrategyKind] = StrategyKind.ICHIMOKU
    tenkan_period: int = 9
    kijun_period: int = 26
    senkou_period: int = 52

    def __post_init__(self):
        _require_period("tenkan_period", self.tenkan_period)
        _require_period("kijun_period", self.kijun_period)
        _require_period("senkou_period", self.senkou_period)

    @property
    def min_candles(self) -> int:
        return max(self.tenkan_period, self.kijun_period, self.senkou_period)


@dataclass(frozen=True)
class PivotPointsParams:
    kind: ClassVar[StrategyKind] = StrategyKind.PIVOT_POINTS
    pivot_type: PivotType = PivotType.STANDARD

    def __post_init__(self):
        try:
            object.__setattr__(self, "pivot_type", PivotType(self.pivot_type))
        except ValueError:
            raise InvalidParameterError(f"unknown pivot type {self.pivot_type!r}") from None

    @property
    def min_candles(self) -> int:
        return 1


@dataclass(frozen=True)
class SmartMoneyParams:
    kind: ClassVar[StrategyKind] = StrategyKind.SMART_MONEY
    order_block_period: int = 10
    volume_multiplier: float = 2.0

    def __post_init__(self):
        _require_period("order_block_period", self.order_block_period)
        _require_positive("volume_multiplier", self.volume_multiplier)

    @property
    def min_candles(self) -> int:
        return self.order_block_period * 2


@dataclass(frozen=True)
class SupportResistanceParams:
    kind: ClassVar[StrategyKind] = StrategyKind.SUPPORT_RESISTANCE
    lookback_period: int = 20

    def __post_init__(self):
        if self.lookback_period < 5:
            raise InvalidParameterError("lookback_period must be >= 5 for the 5-candle extremum window")

    @property
    def min_candles(self) -> int:
        return 5


@dataclass(frozen=True)
class DynamicParams:
    """Regime-routed meta-strategy. Every threshold is tunable."""
    kind: ClassVar[StrategyKind] = StrategyKind.DYNAMIC
    min_candles_required: int = 50
    regime_lookback: int = 50
    analysis_period: int = 20
    trending_r2: float = 0.6
    ranging_ratio: float = 0.7
    strong_trend: float = 0.7
    low_volatility: float = 0.3
    high_volatility: float = 0.7
    atr_period: int = 14
    atr_base_multiplier: float = 2.0
    atr_min_multiplier: float = 1.5
    atr_max_multiplier: float = 3.0
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    max_band_distance_percent: float = 5.0
    sr_lookback: int = 20
    fibonacci: FibonacciParams = field(default_factory=FibonacciParams)

    def __post_init__(self):
        _require_period("min_candles_required", self.min_candles_required)
        _require_period("regime_lookback", self.regime_lookback)
        _require_period("analysis_period", self.analysis_period)
        _require_period("atr_period", self.atr_period)
        _require_period("bollinger_period", self.bollinger_period)
        if self.sr_lookback < 5:
            raise InvalidParameterError("sr_lookback must be >= 5 for the 5-candle extremum window")
        if not self.low_volatility <= self.high_volatility:
            raise InvalidParameterError("low_volatility must not exceed high_volatility")

    @property
    def min_candles(self) -> int:
        # Every route must have its window, whichever one the regime picks.
        return max(
            self.min_candles_required,
            self.regime_lookback,
            self.analysis_period,
            self.atr_period + 1,
            self.bollinger_period,
            self.sr_lookback,
            self.fibonacci.min_candles,
        )


@dataclass(frozen=True)
class HybridParams:
    kind: ClassVar[StrategyKind] = StrategyKind.HYBRID
    atr: AtrParams = field(default_factory=AtrParams)
    fibonacci: FibonacciParams = field(default_factory=FibonacciParams)
    volume_profile: VolumeProfileParams = field(default_factory=VolumeProfileParams)
    atr_weight: float = 0.3
    fibonacci_weight: float = 0.4
    volume_profile_weight: float = 0.3

    def __post_init__(self):
        weights = (self.atr_weight, self.fibonacci_weight, self.volume_profile_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise InvalidParameterError("hybrid weights must be non-negative with a positive sum")

    @property
    def min_candles(self) -> int:
        # Each component falls back on its own.
        return 0


StrategyParams = Union[
    PercentageParams,
    AtrParams,
    FibonacciParams,
    BollingerParams,
    VolumeProfileParams,
    IchimokuParams,
    PivotPointsParams,
    SmartMoneyParams,
    SupportResistanceParams,
    DynamicParams,
    HybridParams,
]

PARAMS_BY_KIND: Dict[StrategyKind, type] = {
    cls.kind: cls
    for cls in (
        PercentageParams,
        AtrParams,
        FibonacciParams,
        BollingerParams,
        VolumeProfileParams,
        IchimokuParams,
        PivotPointsParams,
        SmartMoneyParams,
        SupportResistanceParams,
        DynamicParams,
        HybridParams,
    )
}


def params_from_dict(kind: Union[StrategyKind, str], values: Optional[Mapping[str, Any]] = None) -> StrategyParams:
    """Build the variant for `kind` from a plain mapping; unknown keys are rejected."""
    kind = StrategyKind(kind)
    cls = PARAMS_BY_KIND[kind]
    values = dict(values or {})
    allowed = {f.name for f in fields(cls)}
    unknown = set(values) - allowed
    if unknown:
        raise InvalidParameterError(f"unknown parameters for {kind.value}: {sorted(unknown)}")
    return cls(**values)


def default_params(
    kind: Union[StrategyKind, str],
    settings: Optional["Settings"] = None,
    trailing_percent: Optional[float] = None,
) -> StrategyParams:
    """Default parameters for `kind` taken from the settings blocks."""
    kind = StrategyKind(kind)
    if settings is None:
        if kind == StrategyKind.PERCENTAGE and trailing_percent is not None:
            return PercentageParams(trailing_percent=trailing_percent)
        return PARAMS_BY_KIND[kind]()

    atr = AtrParams(atr_period=settings.atr_period, atr_multiplier=settings.atr_multiplier)
    fib = FibonacciParams(
        level=settings.fibonacci.default_level,
        lookback_period=settings.fibonacci.lookback_period,
    )
    vp = VolumeProfileParams(
        period=settings.volume_profile.period,
        value_area_percent=settings.volume_profile.value_area_percent,
    )
    if kind == StrategyKind.PERCENTAGE:
        return PercentageParams(trailing_percent=trailing_percent or settings.default_trailing_percent)
    if kind == StrategyKind.ATR:
        return atr
    if kind == StrategyKind.FIBONACCI:
        return fib
    if kind == StrategyKind.BOLLINGER_BANDS:
        return BollingerParams(period=settings.bollinger.period, std_dev=settings.bollinger.std_dev)
    if kind == StrategyKind.VOLUME_PROFILE:
        return vp
    if kind == StrategyKind.ICHIMOKU:
        ichi = settings.ichimoku
        return IchimokuParams(
            tenkan_period=ichi.tenkan_period,
            kijun_period=ichi.kijun_period,
            senkou_period=ichi.senkou_period,
        )
    if kind == StrategyKind.PIVOT_POINTS:
        return PivotPointsParams(pivot_type=settings.pivot.type)
    if kind == StrategyKind.SMART_MONEY:
        return SmartMoneyParams(
            order_block_period=settings.smart_money.order_block_period,
            volume_multiplier=settings.smart_money.volume_multiplier,
        )
    if kind == StrategyKind.SUPPORT_RESISTANCE:
        return SupportResistanceParams(lookback_period=settings.support_resistance.lookback_period)
    if kind == StrategyKind.DYNAMIC:
        dyn = settings.dynamic
        return DynamicParams(
            min_candles_required=dyn.min_candles,
            regime_lookback=dyn.regime_lookback,
            analysis_period=dyn.analysis_period,
            trending_r2=dyn.trending_r2,
            ranging_ratio=dyn.ranging_ratio,
            strong_trend=dyn.strong_trend,
            low_volatility=dyn.low_volatility,
            high_volatility=dyn.high_volatility,
            atr_period=settings.atr_period,
            atr_base_multiplier=settings.atr_multiplier,
            bollinger_period=settings.bollinger.period,
            bollinger_std_dev=settings.bollinger.std_dev,
            max_band_distance_percent=dyn.max_band_distance_percent,
            sr_lookback=settings.support_resistance.lookback_period,
            fibonacci=fib,
        )
    hyb = settings.hybrid
    return HybridParams(
        atr=atr,
        fibonacci=fib,
        volume_profile=vp,
        atr_weight=hyb.atr_weight,
        fibonacci_weight=hyb.fibonacci_weight,
        volume_profile_weight=hyb.volume_profile_weight,
    )
