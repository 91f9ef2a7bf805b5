"""
PositionManager: owns trailing positions and drives them on a monitoring thread.
Each tick works on a copy and commits by swapping the stored reference, so readers
only ever see committed state.
"""

from __future__ import annotations
import copy
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from trailstop.alerts.base import AlertSink
from trailstop.core.config import Settings
from trailstop.core.errors import InvalidParameterError, InvalidPositionError, PositionLimitError, PriceUnavailableError
from trailstop.core.types import (
    Alert,
    AlertType,
    Candle,
    Position,
    PositionStatus,
    Severity,
    Side,
    StrategyKind,
    new_id,
)
from trailstop.feeds.base import CandleSource
from trailstop.feeds.cache import PriceCache
from trailstop.positions import lifecycle
from trailstop.risk.sizing import dynamic_trailing_percent, market_volatility, optimal_quantity
from trailstop.strategies.calculator import StopCalculator
from trailstop.strategies.params import StrategyParams, default_params
from trailstop.switching.evaluator import SwitchRuleEvaluator

logger = logging.getLogger("trailstop.positions")


class PositionManager:
    """
    Arena of positions keyed by id plus an index of live (pending/active) ids.
    Only the monitoring thread (or a direct tick() caller) mutates positions.
    """

    def __init__(
        self,
        source: CandleSource,
        settings: Optional[Settings] = None,
        alerts: Optional[AlertSink] = None,
        evaluator: Optional[SwitchRuleEvaluator] = None,
        calculator: Optional[StopCalculator] = None,
        price_cache: Optional[PriceCache] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._source = source
        self._settings = settings or Settings()
        self._alerts = alerts
        self._evaluator = evaluator
        self._calculator = calculator or StopCalculator(self._settings.default_trailing_percent)
        self._cache = price_cache or PriceCache()
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._positions: Dict[str, Position] = {}
        self._live: Dict[str, None] = {}
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._interval_s = self._settings.update_interval_ms / 1000.0

    # --- creation / removal ---

    def create_position(
        self,
        symbol: str,
        side: Union[Side, str],
        quantity: float,
        entry_price: Optional[float] = None,
        strategy: Optional[Union[StrategyKind, str]] = None,
        params: Optional[StrategyParams] = None,
        trailing_percent: Optional[float] = None,
        max_loss_percent: Optional[float] = None,
        activation_price: Optional[float] = None,
        take_profit_price: Optional[float] = None,
        account_balance: Optional[float] = None,
        risk_percent: Optional[float] = None,
    ) -> Position:
        settings = self._settings
        side = Side(side)
        is_long = side == Side.LONG
        quantity = lifecycle.require_positive("quantity", quantity)
        if entry_price is not None:
            entry_price = lifecycle.require_positive("entry_price", entry_price)
        if activation_price is not None:
            activation_price = lifecycle.require_positive("activation_price", activation_price)
        if take_profit_price is not None:
            take_profit_price = lifecycle.require_positive("take_profit_price", take_profit_price)
        max_loss = settings.default_max_loss if max_loss_percent is None else max_loss_percent
        if not 0 < max_loss < 100:
            raise InvalidPositionError(f"max_loss_percent must be in (0, 100), got {max_loss!r}")

        if strategy is None:
            strategy = params.kind if params is not None else settings.default_strategy
        strategy = StrategyKind(strategy)
        if params is not None and params.kind != strategy:
            raise InvalidParameterError(f"params for {params.kind.value} given with strategy {strategy.value}")

        with self._lock:
            if len(self._live) >= settings.max_positions:
                raise PositionLimitError(f"live position limit reached ({settings.max_positions})")

        now = self._clock()
        current = self._fetch_price(symbol, now)
        if current is not None and not lifecycle.valid_price(current):
            logger.warning("Invalid price %r for %s at creation, ignoring", current, symbol)
            current = None
        if current is None:
            if entry_price is None:
                raise PriceUnavailableError(f"no price for {symbol} and no entry price given")
            current = entry_price
        entry = entry_price or current
        candles = self._fetch_candles(symbol)
        volatility = market_volatility(candles, settings.atr_period, settings.volatility_lookback)

        if account_balance is not None:
            if risk_percent is None:
                risk_percent = settings.max_risk_per_position
            quantity = optimal_quantity(
                entry, quantity, account_balance, risk_percent, volatility, settings.atr_multiplier
            )

        if params is None:
            if strategy == StrategyKind.PERCENTAGE and trailing_percent is None:
                trailing_percent = dynamic_trailing_percent(
                    settings.default_trailing_percent, volatility, settings.volatility_multiplier
                )
            params = default_params(strategy, settings, trailing_percent)

        result = self._calculator.compute(params, entry, entry, is_long, candles, entry, entry)
        stop = lifecycle.bound_by_max_loss(result.stop_loss, entry, max_loss, is_long)

        pending = activation_price is not None
        position = Position(
            id=new_id(),
            symbol=symbol,
            side=side,
            quantity=quantity,
            entry_price=entry,
            current_price=current,
            highest_price=entry,
            lowest_price=entry,
            strategy=strategy,
            params=params,
            max_loss_percent=max_loss,
            stop_loss_price=stop,
            status=PositionStatus.PENDING if pending else PositionStatus.ACTIVE,
            created_at=now,
            activation_price=activation_price,
            take_profit_price=take_profit_price,
            activated_at=None if pending else now,
            support_level=result.support_level,
            resistance_level=result.resistance_level,
            stop_history=[(now, stop)],
        )
        lifecycle.update_performance(position, current)

        with self._lock:
            if len(self._live) >= settings.max_positions:
                raise PositionLimitError(f"live position limit reached ({settings.max_positions})")
            self._positions[position.id] = position
            self._live[position.id] = None

        logger.info(
            "Created %s %s position %s: entry=%.8f stop=%.8f strategy=%s status=%s",
            side.value, symbol, position.id, entry, stop, strategy.value, position.status.value,
        )
        self._emit(
            AlertType.ACTIVATION,
            position,
            f"Trailing stop {'armed' if pending else 'activated'} for {symbol} {side.value} at {entry:.8g}, stop {stop:.8g}",
            Severity.INFO,
            symbol=symbol,
            price=entry,
            stop_loss=stop,
            strategy=strategy.value,
            status=position.status.value,
            fallback_reason=result.fallback_reason,
        )
        return copy.deepcopy(position)

    def cancel_position(self, position_id: str) -> Optional[Position]:
        """Live position -> cancelled, kept in the arena. Terminal positions are returned unchanged."""
        with self._lock:
            stored = self._positions.get(position_id)
            if stored is None:
                return None
            if stored.is_live:
                cancelled = copy.deepcopy(stored)
                cancelled.status = PositionStatus.CANCELLED
                self._positions[position_id] = cancelled
                self._live.pop(position_id, None)
                stored = cancelled
                logger.info("Cancelled position %s", position_id)
            return copy.deepcopy(stored)

    def remove_position(self, position_id: str) -> bool:
        with self._lock:
            if self.cancel_position(position_id) is None:
                return False
            del self._positions[position_id]
        logger.info("Removed position %s", position_id)
        return True

    # --- reads ---

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            stored = self._positions.get(position_id)
        return copy.deepcopy(stored) if stored is not None else None

    def all_positions(self) -> List[Position]:
        with self._lock:
            stored = list(self._positions.values())
        return copy.deepcopy(stored)

    def live_positions(self) -> List[Position]:
        with self._lock:
            stored = [self._positions[pid] for pid in self._live]
        return copy.deepcopy(stored)

    def stats(self) -> Dict[str, Any]:
        positions = self.all_positions()
        by_status = {s.value: 0 for s in PositionStatus}
        by_strategy: Dict[str, int] = {}
        for p in positions:
            by_status[p.status.value] += 1
            by_strategy[p.strategy.value] = by_strategy.get(p.strategy.value, 0) + 1
        live = [p for p in positions if p.is_live]
        return {
            "total": len(positions),
            "live": len(live),
            "by_status": by_status,
            "by_strategy": by_strategy,
            "total_unrealized_pnl": sum(p.unrealized_pnl for p in live),
            "monitoring": self.is_monitoring,
        }

    # --- ticking ---

    def tick(self, position_id: str, price: Optional[float] = None) -> Optional[Position]:
        """
        Refresh one position. Returns the committed snapshot, or None for unknown ids.
        Never raises for market-data problems; unexpected errors put the position in `error`.
        """
        with self._lock:
            stored = self._positions.get(position_id)
        if stored is None:
            return None
        if not stored.is_live:
            return copy.deepcopy(stored)
        try:
            return self._tick(stored, price)
        except Exception as e:
            logger.exception("Tick failed for position %s: %s", position_id, e)
            return self._mark_error(stored, e)

    def _tick(self, stored: Position, price: Optional[float]) -> Position:
        now = self._clock()
        if price is None:
            price = self._fetch_price(stored.symbol, now)
            if price is None:
                price = self._cache.get(stored.symbol, now, self._settings.price_cache_max_age_ms)
                if price is None:
                    logger.warning("No fresh price for %s, skipping tick of %s", stored.symbol, stored.id)
                    return copy.deepcopy(stored)
                logger.warning("Using cached price %.8f for %s", price, stored.symbol)

        if not lifecycle.valid_price(price):
            logger.warning("Invalid price %r for %s, skipping tick of %s", price, stored.symbol, stored.id)
            self._emit(
                AlertType.WARNING,
                stored,
                f"Invalid price {price!r} for {stored.symbol}; tick skipped",
                Severity.WARNING,
                symbol=stored.symbol,
                price=repr(price),
            )
            return copy.deepcopy(stored)
        price = float(price)

        work = copy.deepcopy(stored)
        is_long = work.is_long

        if work.status == PositionStatus.PENDING:
            if lifecycle.activation_reached(price, work.activation_price, is_long):
                work.status = PositionStatus.ACTIVE
                work.activated_at = now
                logger.info("Position %s activated at %.8f", work.id, price)
                self._emit(
                    AlertType.ACTIVATION,
                    work,
                    f"Trailing stop activated for {work.symbol} at {price:.8g}",
                    Severity.SUCCESS,
                    symbol=work.symbol,
                    price=price,
                    stop_loss=work.stop_loss_price,
                )
            else:
                work.current_price = price
                return self._commit(stored, work)

        candles = self._fetch_candles(work.symbol)
        extreme_moved = lifecycle.update_extremes(work, price)
        lifecycle.update_performance(work, price)

        if extreme_moved and self._evaluator is not None:
            decision = self._evaluator.evaluate(work, candles, now)
            if decision.should_switch:
                from_strategy = work.strategy
                new_params = default_params(decision.new_strategy, self._settings)
                work = self._evaluator.execute_switch(
                    work, decision.new_strategy, new_params, decision.reason, candles, self._calculator, now
                )
                self._emit(
                    AlertType.STRATEGY_SWITCH,
                    work,
                    f"{work.symbol}: strategy {from_strategy.value} -> {work.strategy.value} ({decision.reason})",
                    Severity.INFO,
                    symbol=work.symbol,
                    price=price,
                    stop_loss=work.stop_loss_price,
                    from_strategy=from_strategy.value,
                    to_strategy=work.strategy.value,
                    reason=decision.reason,
                )

        result = self._calculator.compute(
            work.params, price, work.entry_price, is_long, candles, work.highest_price, work.lowest_price
        )
        new_stop, accepted = lifecycle.apply_ratchet(work.stop_loss_price, result.stop_loss, is_long)
        if not accepted:
            logger.warning(
                "Position %s: candidate stop %.8f would loosen %.8f, keeping old stop",
                work.id, result.stop_loss, work.stop_loss_price,
            )
        elif new_stop != work.stop_loss_price:
            work.stop_loss_price = new_stop
            work.stop_history.append((now, new_stop))
            work.support_level = result.support_level
            work.resistance_level = result.resistance_level

        if lifecycle.stop_hit(price, work.stop_loss_price, is_long):
            self._trigger(work, price, now, "trailing_stop")
        elif lifecycle.take_profit_hit(price, work.take_profit_price, is_long):
            self._trigger(work, price, now, "take_profit")
        elif work.stop_loss_price != stored.stop_loss_price:
            moved_pct = abs(work.stop_loss_price - stored.stop_loss_price) / price * 100.0
            if moved_pct >= self._settings.price_change_threshold:
                self._emit(
                    AlertType.ADJUSTMENT,
                    work,
                    f"{work.symbol} stop moved {stored.stop_loss_price:.8g} -> {work.stop_loss_price:.8g}",
                    Severity.INFO,
                    symbol=work.symbol,
                    price=price,
                    stop_loss=work.stop_loss_price,
                    previous_stop=stored.stop_loss_price,
                    pnl_percent=work.unrealized_pnl_percent,
                )
        return self._commit(stored, work)

    def _trigger(self, work: Position, price: float, now: int, reason: str) -> None:
        work.status = PositionStatus.TRIGGERED
        work.triggered_at = now
        lifecycle.update_performance(work, price)
        logger.info(
            "Position %s triggered (%s) at %.8f, pnl=%.4f (%.2f%%)",
            work.id, reason, price, work.unrealized_pnl, work.unrealized_pnl_percent,
        )
        self._emit(
            AlertType.TRIGGER,
            work,
            f"{work.symbol} {work.side.value} closed by {reason} at {price:.8g}",
            Severity.WARNING,
            symbol=work.symbol,
            price=price,
            stop_loss=work.stop_loss_price,
            pnl=work.unrealized_pnl,
            pnl_percent=work.unrealized_pnl_percent,
            reason=reason,
        )

    def _commit(self, stored: Position, work: Position) -> Position:
        with self._lock:
            if self._positions.get(stored.id) is not stored:
                # Cancelled or removed while the tick ran; that decision wins.
                logger.info("Position %s changed during tick, discarding result", stored.id)
                current = self._positions.get(stored.id)
                return copy.deepcopy(current) if current is not None else copy.deepcopy(stored)
            self._positions[stored.id] = work
            if not work.is_live:
                self._live.pop(stored.id, None)
        return copy.deepcopy(work)

    def _mark_error(self, stored: Position, exc: Exception) -> Position:
        failed = copy.deepcopy(stored)
        failed.status = PositionStatus.ERROR
        committed = self._commit(stored, failed)
        self._emit(
            AlertType.WARNING,
            failed,
            f"{failed.symbol} position moved to error: {exc}",
            Severity.ERROR,
            symbol=failed.symbol,
            error=str(exc),
        )
        return committed

    def run_cycle(self) -> int:
        """Tick every live position once. Returns how many were ticked."""
        with self._lock:
            ids = list(self._live)
        ticked = 0
        for position_id in ids:
            if self._thread is not None and self._stop_event.is_set():
                break
            self.tick(position_id)
            ticked += 1
        return ticked

    # --- monitoring ---

    @property
    def is_monitoring(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start_monitoring(self, interval_ms: Optional[int] = None) -> bool:
        """Start the monitoring thread. False if already running."""
        with self._lock:
            if self.is_monitoring:
                return False
            self._interval_s = (interval_ms or self._settings.update_interval_ms) / 1000.0
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._monitor_loop, name="trailstop-monitor", daemon=True)
            self._thread.start()
        logger.info("Monitoring started (interval %.3fs)", self._interval_s)
        return True

    def stop_monitoring(self, timeout: Optional[float] = None) -> bool:
        """Signal the loop to stop and wait for the in-flight tick. True once the thread has exited."""
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return True
        if thread is not threading.current_thread():
            thread.join(timeout)
        if thread.is_alive():
            return False
        self._thread = None
        logger.info("Monitoring stopped")
        return True

    def _monitor_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                logger.exception("Monitoring cycle error: %s", e)
            self._stop_event.wait(self._interval_s)

    # --- collaborators ---

    def _fetch_price(self, symbol: str, now: int) -> Optional[float]:
        """Source price, cached when valid. None on failure; invalid values are returned for the caller to reject."""
        try:
            price = self._source.get_current_price(symbol)
        except Exception as e:
            logger.warning("Price fetch failed for %s: %s", symbol, e)
            return None
        if lifecycle.valid_price(price):
            self._cache.put(symbol, price, now)
        return price

    def _fetch_candles(self, symbol: str) -> Sequence[Candle]:
        try:
            return list(self._source.get_candles(symbol, self._settings.timeframe, self._settings.candle_limit))
        except Exception as e:
            logger.warning("Candle fetch failed for %s: %s", symbol, e)
            return []

    def _emit(self, alert_type: AlertType, position: Position, message: str, severity: Severity, **data: Any) -> None:
        if self._alerts is None:
            return
        alert = Alert(
            id=new_id("alert_"),
            type=alert_type,
            message=message,
            position_id=position.id,
            timestamp=self._clock(),
            severity=severity,
            data=data,
        )
        try:
            self._alerts.emit(alert)
        except Exception as e:
            logger.exception("Alert sink failed: %s", e)
