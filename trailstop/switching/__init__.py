"""Strategy switching: rules and evaluator."""

from trailstop.switching.evaluator import SwitchDecision, SwitchRuleEvaluator
from trailstop.switching.rules import (
    Bounds,
    MarketConditionCondition,
    PerformanceCondition,
    PriceActionCondition,
    SwitchRule,
    TimeInPositionCondition,
    TrendCondition,
    VolatilityCondition,
    default_rules,
)

__all__ = [
    "SwitchDecision",
    "SwitchRuleEvaluator",
    "Bounds",
    "SwitchRule",
    "TrendCondition",
    "VolatilityCondition",
    "PerformanceCondition",
    "MarketConditionCondition",
    "PriceActionCondition",
    "TimeInPositionCondition",
    "default_rules",
]
