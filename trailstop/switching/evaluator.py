"""
SwitchRuleEvaluator: picks the first matching enabled rule (highest priority first)
for a position's current strategy, and performs the switch.
"""

from __future__ import annotations
import copy
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence

from trailstop.core.types import Candle, Position, StrategyKind, SwitchEvent, new_id
from trailstop.positions import lifecycle
from trailstop.strategies import indicators as ind
from trailstop.strategies.calculator import StopCalculator
from trailstop.strategies.params import StrategyParams
from trailstop.switching.rules import (
    MarketConditionCondition,
    PerformanceCondition,
    PriceActionCondition,
    SwitchCondition,
    SwitchRule,
    TimeInPositionCondition,
    TrendCondition,
    VolatilityCondition,
    default_rules,
)

logger = logging.getLogger("trailstop.switching")

MIN_ANALYSIS_CANDLES = 20


@dataclass(frozen=True)
class SwitchDecision:
    should_switch: bool
    new_strategy: Optional[StrategyKind] = None
    reason: Optional[str] = None
    matched_rule: Optional[SwitchRule] = None


NO_SWITCH = SwitchDecision(should_switch=False)


class SwitchRuleEvaluator:
    def __init__(
        self,
        rules: Optional[Sequence[SwitchRule]] = None,
        periods_per_year: float = 252.0,
        clock: Optional[Callable[[], int]] = None,
        regime_lookback: int = 50,
    ):
        self._rules: List[SwitchRule] = list(rules) if rules is not None else default_rules()
        self._history: List[SwitchEvent] = []
        self._lock = threading.Lock()
        self.periods_per_year = periods_per_year
        self.regime_lookback = regime_lookback
        self._clock = clock or (lambda: int(time.time() * 1000))

    # --- rule table ---

    def add_rule(self, rule: SwitchRule) -> None:
        with self._lock:
            self._rules = [r for r in self._rules if r.id != rule.id] + [rule]

    def remove_rule(self, rule_id: str) -> bool:
        with self._lock:
            before = len(self._rules)
            self._rules = [r for r in self._rules if r.id != rule_id]
            return len(self._rules) != before

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            for i, rule in enumerate(self._rules):
                if rule.id == rule_id:
                    self._rules[i] = replace(rule, enabled=enabled)
                    return True
        return False

    def rules(self) -> List[SwitchRule]:
        """Descending priority; insertion order on ties."""
        with self._lock:
            return sorted(self._rules, key=lambda r: -r.priority)

    # --- evaluation ---

    def evaluate(self, position: Position, candles: Sequence[Candle], now: Optional[int] = None) -> SwitchDecision:
        now = self._clock() if now is None else now
        for rule in self.rules():
            if not rule.enabled or rule.from_strategy != position.strategy:
                continue
            if self._holds(rule.condition, position, candles, now):
                logger.debug("Rule %s matched for position %s", rule.id, position.id)
                return SwitchDecision(
                    should_switch=True,
                    new_strategy=rule.to_strategy,
                    reason=rule.name,
                    matched_rule=rule,
                )
        return NO_SWITCH

    def _holds(self, condition: SwitchCondition, position: Position, candles: Sequence[Candle], now: int) -> bool:
        closes = [c.close for c in candles]
        if isinstance(condition, TrendCondition):
            if len(candles) < max(condition.min_candles, MIN_ANALYSIS_CANDLES):
                return False
            return condition.strength.contains(ind.trend_strength(closes))
        if isinstance(condition, VolatilityCondition):
            if len(candles) < max(condition.min_candles, MIN_ANALYSIS_CANDLES):
                return False
            return condition.level.contains(ind.annualized_volatility(closes, self.periods_per_year))
        if isinstance(condition, PerformanceCondition):
            if condition.pnl_percent is not None and not condition.pnl_percent.contains(position.unrealized_pnl_percent):
                return False
            if condition.drawdown_percent is not None and not condition.drawdown_percent.contains(position.max_drawdown_percent):
                return False
            return True
        if isinstance(condition, MarketConditionCondition):
            if len(candles) < MIN_ANALYSIS_CANDLES:
                return False
            if ind.classify_regime(candles[-self.regime_lookback:]) != condition.regime:
                return False
            if condition.volatility is not None:
                return condition.volatility.contains(ind.annualized_volatility(closes, self.periods_per_year))
            return True
        if isinstance(condition, PriceActionCondition):
            window = closes[-condition.lookback:]
            if len(window) < 2 or window[0] <= 0:
                return False
            change = (window[-1] - window[0]) / window[0] * 100.0
            if condition.direction == "up":
                return change >= condition.percentage
            return change <= -condition.percentage
        if isinstance(condition, TimeInPositionCondition):
            minutes = (now - position.created_at) / 60_000
            return condition.minutes.contains(minutes)
        logger.warning("Unknown switch condition %r", condition)
        return False

    # --- switching ---

    def execute_switch(
        self,
        position: Position,
        new_strategy: StrategyKind,
        new_params: StrategyParams,
        reason: str,
        candles: Sequence[Candle],
        calculator: StopCalculator,
        now: Optional[int] = None,
    ) -> Position:
        """
        New Position with the new strategy and params. Entry, extremes, PnL and stop history
        carry over; the stop is recomputed and only accepted if it does not loosen protection.
        """
        now = self._clock() if now is None else now
        new_strategy = StrategyKind(new_strategy)
        if new_params.kind != new_strategy:
            raise ValueError(f"params for {new_params.kind.value} given for switch to {new_strategy.value}")
        updated = copy.deepcopy(position)
        updated.strategy = new_strategy
        updated.params = new_params

        result = calculator.compute(
            new_params,
            updated.current_price,
            updated.entry_price,
            updated.is_long,
            candles,
            updated.highest_price,
            updated.lowest_price,
        )
        stop, accepted = lifecycle.apply_ratchet(updated.stop_loss_price, result.stop_loss, updated.is_long)
        if accepted:
            if stop != updated.stop_loss_price:
                updated.stop_history.append((now, stop))
            updated.stop_loss_price = stop
            updated.support_level = result.support_level
            updated.resistance_level = result.resistance_level
        else:
            logger.warning(
                "Switch %s: candidate stop %.8f from %s would loosen protection, keeping %.8f",
                position.id, result.stop_loss, new_strategy.value, updated.stop_loss_price,
            )

        closes = [c.close for c in candles]
        event = SwitchEvent(
            id=new_id("switch_"),
            position_id=position.id,
            timestamp=now,
            from_strategy=position.strategy,
            to_strategy=new_strategy,
            reason=reason,
            pnl_at_switch=position.unrealized_pnl,
            pnl_percent_at_switch=position.unrealized_pnl_percent,
            market={
                "price": position.current_price,
                "volatility": ind.annualized_volatility(closes, self.periods_per_year) if len(closes) >= MIN_ANALYSIS_CANDLES else 0.0,
            },
        )
        with self._lock:
            self._history.append(event)
        logger.info("Position %s: %s -> %s (%s)", position.id, position.strategy.value, new_strategy.value, reason)
        return updated

    def history(self, position_id: Optional[str] = None) -> List[SwitchEvent]:
        with self._lock:
            events = list(self._history)
        if position_id is not None:
            events = [e for e in events if e.position_id == position_id]
        return [replace(e, market=dict(e.market)) for e in events]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()

    def stats(self) -> Dict[str, int]:
        """Switch counts keyed 'from->to'."""
        counts: Dict[str, int] = {}
        for e in self.history():
            key = f"{e.from_strategy.value}->{e.to_strategy.value}"
            counts[key] = counts.get(key, 0) + 1
        return counts
