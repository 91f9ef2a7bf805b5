"""
Backtest runner: replays the stop calculator over historical candles.
Candles are observed at their close, one tick per candle; no lookahead.
Fees are charged on entry and exit.
"""

from __future__ import annotations
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from trailstop.analytics.metrics import BacktestPerformance, compute_performance
from trailstop.core.types import BacktestTrade, Candle, Side, new_id
from trailstop.feeds.base import candles_to_frame
from trailstop.positions import lifecycle
from trailstop.strategies.calculator import StopCalculator
from trailstop.strategies.params import StrategyParams
from trailstop.utils.timeframes import periods_per_year

logger = logging.getLogger("trailstop.backtest")

MAX_HOLDING_MS = 30 * 24 * 3_600_000
BREAKOUT_PERCENT = 2.0
PULLBACK_RSI = 40.0


class EntryCondition(str, Enum):
    ALWAYS = "always"
    TREND_UP = "trend_up"
    TREND_DOWN = "trend_down"
    BREAKOUT = "breakout"
    PULLBACK = "pullback"


@dataclass
class BacktestConfig:
    symbol: str
    params: StrategyParams
    side: Side = Side.LONG
    initial_capital: float = 10000.0
    position_size: float = 0.1  # fraction of available capital per trade
    max_positions: int = 1
    max_loss_percent: float = 5.0
    take_profit_percent: Optional[float] = None
    entry_condition: EntryCondition = EntryCondition.ALWAYS
    min_volume: Optional[float] = None
    rsi_overbought: Optional[float] = None
    rsi_oversold: Optional[float] = None
    rsi_period: int = 14
    fee_rate: float = 0.001
    max_holding_ms: int = MAX_HOLDING_MS
    candle_window: int = 200
    timeframe: str = "1h"

    def __post_init__(self):
        self.side = Side(self.side)
        self.entry_condition = EntryCondition(self.entry_condition)
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be > 0")
        if not 0 < self.position_size <= 1:
            raise ValueError("position_size must be in (0, 1]")
        if self.max_positions < 1:
            raise ValueError("max_positions must be >= 1")
        if not 0 < self.max_loss_percent < 100:
            raise ValueError("max_loss_percent must be in (0, 100)")
        if self.take_profit_percent is not None and self.take_profit_percent <= 0:
            raise ValueError("take_profit_percent must be > 0")
        if self.fee_rate < 0:
            raise ValueError("fee_rate must be >= 0")
        if self.candle_window < 1 or self.rsi_period < 1:
            raise ValueError("candle_window and rsi_period must be >= 1")


@dataclass
class EquityPoint:
    timestamp: int
    equity: float
    drawdown: float
    trades: int  # closed trades so far


@dataclass
class DrawdownPoint:
    timestamp: int
    drawdown: float
    drawdown_percent: float
    duration_hours: float


@dataclass
class MonthlyReturn:
    year: int
    month: int
    pnl: float
    return_percent: float
    trades: int


@dataclass
class BacktestResult:
    """Backtest output: trades, performance, curves."""
    config: BacktestConfig
    trades: List[BacktestTrade] = field(default_factory=list)
    performance: Optional[BacktestPerformance] = None
    equity_curve: List[EquityPoint] = field(default_factory=list)
    drawdown_curve: List[DrawdownPoint] = field(default_factory=list)
    monthly_returns: List[MonthlyReturn] = field(default_factory=list)
    candles_processed: int = 0


def compute_indicators(candles: Sequence[Candle], rsi_period: int = 14, atr_period: int = 14) -> pd.DataFrame:
    """Per-candle RSI (simple average), ATR and log-return volatility. Row i uses candles <= i only."""
    df = candles_to_frame(candles)
    # RSI
    delta = df["close"].diff()
    gain = delta.clip(lower=0).rolling(rsi_period).sum() / rsi_period
    loss = (-delta).clip(lower=0).rolling(rsi_period).sum() / rsi_period
    rs = gain / loss.replace(0, np.nan)
    rsi = 100 - (100 / (1 + rs))
    rsi = rsi.where(loss != 0, np.where(gain > 0, 100.0, 50.0))
    df["rsi"] = rsi.where(gain.notna())
    # ATR
    high_low = df["high"] - df["low"]
    high_close = (df["high"] - df["close"].shift()).abs()
    low_close = (df["low"] - df["close"].shift()).abs()
    tr = pd.concat([high_low, high_close, low_close], axis=1).max(axis=1)
    tr.iloc[0] = np.nan
    df["atr"] = tr.rolling(atr_period).mean()
    # Volatility
    log_ret = np.log(df["close"] / df["close"].shift())
    df["volatility"] = log_ret.rolling(20).std(ddof=0)
    return df


def _optional(value) -> Optional[float]:
    return None if value is None or pd.isna(value) else float(value)


class BacktestRunner:
    """
    For each candle: trail and exit open trades, then maybe enter, then mark equity.
    Exit order: trailing_stop, take_profit, max_holding_period. Exits fill at the close.
    """

    def __init__(self, calculator: Optional[StopCalculator] = None):
        self.calculator = calculator or StopCalculator()

    def run(self, config: BacktestConfig, candles: Sequence[Candle]) -> BacktestResult:
        if not candles:
            raise ValueError("backtest needs at least one candle")
        candles = list(candles)
        is_long = config.side == Side.LONG
        ind = compute_indicators(candles, config.rsi_period)
        rsi_col = ind["rsi"].to_numpy()
        atr_col = ind["atr"].to_numpy()
        vol_col = ind["volatility"].to_numpy()

        cash = config.initial_capital
        open_trades: List[BacktestTrade] = []
        closed: List[BacktestTrade] = []
        equity_raw: List[Tuple[int, float, int]] = []

        for i, candle in enumerate(candles):
            price = candle.close
            window = candles[max(0, i + 1 - config.candle_window): i + 1]

            # 1. trail and exit
            still_open: List[BacktestTrade] = []
            for trade in open_trades:
                lifecycle.update_extremes(trade, price)
                result = self.calculator.compute(
                    config.params, price, trade.entry_price, is_long, window,
                    trade.highest_price, trade.lowest_price,
                )
                stop, accepted = lifecycle.apply_ratchet(trade.stop_price, result.stop_loss, is_long)
                if not accepted:
                    logger.debug("Trade %s: candidate %.8f rejected by ratchet", trade.id, result.stop_loss)
                trade.stop_price = stop
                trade.unrealized_pnl, _ = lifecycle.pnl(trade.entry_price, price, trade.quantity, is_long)

                reason = None
                if lifecycle.stop_hit(price, trade.stop_price, is_long):
                    reason = "trailing_stop"
                elif lifecycle.take_profit_hit(price, trade.take_profit_price, is_long):
                    reason = "take_profit"
                elif candle.timestamp - trade.entry_time > config.max_holding_ms:
                    reason = "max_holding_period"
                if reason is None:
                    still_open.append(trade)
                else:
                    cash += self._close(trade, candle.timestamp, price, reason, config.fee_rate)
                    closed.append(trade)
            open_trades = still_open

            # 2. entry
            if i > 0 and len(open_trades) < config.max_positions:
                rsi = _optional(rsi_col[i])
                if self._entry_allowed(config, candles[i - 1], candle, rsi):
                    qty = config.position_size * cash / price
                    notional = qty * price
                    fee = notional * config.fee_rate
                    if qty > 0 and notional + fee <= cash:
                        trade = self._open(config, candle, qty, window, rsi, _optional(atr_col[i]), _optional(vol_col[i]))
                        trade.fees = fee
                        cash -= notional + fee
                        open_trades.append(trade)

            # 3. mark to market
            equity = cash + sum(
                t.quantity * t.entry_price + lifecycle.pnl(t.entry_price, price, t.quantity, is_long)[0]
                for t in open_trades
            )
            equity_raw.append((candle.timestamp, equity, len(closed)))

        last = candles[-1]
        for trade in open_trades:
            cash += self._close(trade, last.timestamp, last.close, "end_of_data", config.fee_rate)
            closed.append(trade)
        if open_trades:
            equity_raw[-1] = (last.timestamp, cash, len(closed))

        trades = sorted(closed, key=lambda t: (t.entry_time, t.exit_time))
        equity_curve, drawdown_curve = self._curves(equity_raw)
        ppy = periods_per_year(config.timeframe)
        performance = compute_performance(trades, [p.equity for p in equity_curve], config.initial_capital, ppy)
        logger.info(
            "Backtest %s %s: %d candles, %d trades, return %.2f%%",
            config.symbol, config.params.kind.value, len(candles), performance.total_trades,
            performance.total_return_percent,
        )
        return BacktestResult(
            config=config,
            trades=trades,
            performance=performance,
            equity_curve=equity_curve,
            drawdown_curve=drawdown_curve,
            monthly_returns=self._monthly_returns(trades, equity_curve),
            candles_processed=len(candles),
        )

    @staticmethod
    def _entry_allowed(config: BacktestConfig, prev: Candle, candle: Candle, rsi: Optional[float]) -> bool:
        if config.min_volume is not None and candle.volume < config.min_volume:
            return False
        if rsi is not None:
            if config.rsi_overbought is not None and rsi > config.rsi_overbought:
                return False
            if config.rsi_oversold is not None and rsi < config.rsi_oversold:
                return False
        cond = config.entry_condition
        if cond == EntryCondition.ALWAYS:
            return True
        if cond == EntryCondition.TREND_UP:
            return candle.close > prev.close and candle.close > candle.open
        if cond == EntryCondition.TREND_DOWN:
            return candle.close < prev.close and candle.close < candle.open
        if cond == EntryCondition.BREAKOUT:
            return prev.close > 0 and abs(candle.close - prev.close) / prev.close * 100 > BREAKOUT_PERCENT
        if cond == EntryCondition.PULLBACK:
            return rsi is not None and rsi < PULLBACK_RSI and candle.close > prev.close
        return False

    def _open(
        self,
        config: BacktestConfig,
        candle: Candle,
        qty: float,
        window: Sequence[Candle],
        rsi: Optional[float],
        atr: Optional[float],
        volatility: Optional[float],
    ) -> BacktestTrade:
        price = candle.close
        is_long = config.side == Side.LONG
        result = self.calculator.compute(config.params, price, price, is_long, window, price, price)
        stop = lifecycle.bound_by_max_loss(result.stop_loss, price, config.max_loss_percent, is_long)
        take_profit = None
        if config.take_profit_percent is not None:
            offset = price * config.take_profit_percent / 100.0
            take_profit = price + offset if is_long else price - offset
        return BacktestTrade(
            id=new_id("bt_"),
            side=config.side,
            strategy=config.params.kind,
            entry_time=candle.timestamp,
            entry_price=price,
            quantity=qty,
            highest_price=price,
            lowest_price=price,
            stop_price=stop,
            entry_reason=config.entry_condition.value,
            volume=candle.volume,
            take_profit_price=take_profit,
            rsi=rsi,
            atr=atr,
            volatility=volatility,
        )

    @staticmethod
    def _close(trade: BacktestTrade, ts: int, price: float, reason: str, fee_rate: float) -> float:
        """Close at price; returns the cash released (notional + gross PnL - exit fee)."""
        gross, _ = lifecycle.pnl(trade.entry_price, price, trade.quantity, trade.is_long)
        exit_fee = trade.quantity * price * fee_rate
        trade.fees += exit_fee
        trade.exit_time = ts
        trade.exit_price = price
        trade.exit_reason = reason
        trade.realized_pnl = gross - trade.fees
        trade.unrealized_pnl = 0.0
        trade.status = "stopped" if reason == "trailing_stop" else "closed"
        return trade.quantity * trade.entry_price + gross - exit_fee

    @staticmethod
    def _curves(equity_raw: List[Tuple[int, float, int]]) -> Tuple[List[EquityPoint], List[DrawdownPoint]]:
        equity_curve: List[EquityPoint] = []
        drawdown_curve: List[DrawdownPoint] = []
        peak = None
        peak_ts = None
        for ts, equity, n_trades in equity_raw:
            if peak is None or equity >= peak:
                peak, peak_ts = equity, ts
            dd = peak - equity
            equity_curve.append(EquityPoint(timestamp=ts, equity=equity, drawdown=dd, trades=n_trades))
            drawdown_curve.append(DrawdownPoint(
                timestamp=ts,
                drawdown=dd,
                drawdown_percent=dd / peak * 100.0 if peak > 0 else 0.0,
                duration_hours=(ts - peak_ts) / 3_600_000 if dd > 0 else 0.0,
            ))
        return equity_curve, drawdown_curve

    @staticmethod
    def _monthly_returns(trades: Sequence[BacktestTrade], equity_curve: Sequence[EquityPoint]) -> List[MonthlyReturn]:
        """PnL by UTC exit month, relative to equity at the month's first candle."""
        if not trades:
            return []
        tdf = pd.DataFrame({
            "time": pd.to_datetime([t.exit_time for t in trades], unit="ms", utc=True),
            "pnl": [t.realized_pnl for t in trades],
        })
        tdf["year"], tdf["month"] = tdf["time"].dt.year, tdf["time"].dt.month
        grouped = tdf.groupby(["year", "month"])["pnl"].agg(["sum", "count"])

        edf = pd.DataFrame({
            "time": pd.to_datetime([p.timestamp for p in equity_curve], unit="ms", utc=True),
            "equity": [p.equity for p in equity_curve],
        })
        edf["year"], edf["month"] = edf["time"].dt.year, edf["time"].dt.month
        month_start = edf.groupby(["year", "month"])["equity"].first()

        out: List[MonthlyReturn] = []
        for (year, month), row in grouped.iterrows():
            start = month_start.get((year, month))
            pnl = float(row["sum"])
            out.append(MonthlyReturn(
                year=int(year),
                month=int(month),
                pnl=pnl,
                return_percent=pnl / start * 100.0 if start else 0.0,
                trades=int(row["count"]),
            ))
        return out


def _run_job(job: Tuple[BacktestConfig, Sequence[Candle]]) -> BacktestResult:
    config, candles = job
    return BacktestRunner().run(config, candles)


def run_backtests(
    jobs: Sequence[Tuple[BacktestConfig, Sequence[Candle]]],
    max_workers: Optional[int] = None,
) -> List[BacktestResult]:
    """Independent backtests in a process pool; results in job order. max_workers=1 runs inline."""
    jobs = list(jobs)
    if max_workers == 1 or len(jobs) <= 1:
        return [_run_job(job) for job in jobs]
    with ProcessPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(_run_job, jobs))
