"""Stop-placement strategies: parameters, indicators, calculator."""

from trailstop.strategies.calculator import StopCalculator, StopResult, compute_stop
from trailstop.strategies.params import (
    AtrParams,
    BollingerParams,
    DynamicParams,
    FibonacciParams,
    HybridParams,
    IchimokuParams,
    PercentageParams,
    PivotPointsParams,
    PivotType,
    SmartMoneyParams,
    StrategyParams,
    SupportResistanceParams,
    VolumeProfileParams,
    default_params,
    params_from_dict,
)

__all__ = [
    "StopCalculator",
    "StopResult",
    "compute_stop",
    "StrategyParams",
    "PercentageParams",
    "AtrParams",
    "FibonacciParams",
    "BollingerParams",
    "VolumeProfileParams",
    "IchimokuParams",
    "PivotPointsParams",
    "PivotType",
    "SmartMoneyParams",
    "SupportResistanceParams",
    "DynamicParams",
    "HybridParams",
    "default_params",
    "params_from_dict",
]
