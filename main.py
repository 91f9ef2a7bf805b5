#!/usr/bin/env python3
"""
Trailing stop CLI: backtest | monitor
Usage:
  python main.py backtest --symbol BTCUSDT [--csv candles.csv] [--strategy atr] [--compare]
  python main.py monitor --symbol BTCUSDT --side long --quantity 0.01 [--strategy percentage]
"""

from __future__ import annotations
import argparse
import logging
import sys
import time
from pathlib import Path

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trailstop.alerts.base import FanOutAlertSink, InMemoryAlertSink
from trailstop.alerts.telegram import TelegramAlertSink, send_telegram
from trailstop.backtesting.engine import BacktestConfig, BacktestResult, run_backtests
from trailstop.core.config import Settings, load_settings
from trailstop.core.logger import setup_logging
from trailstop.core.types import Side, StrategyKind
from trailstop.feeds.base import CandleSource, CsvCandleSource
from trailstop.feeds.binance_futures import BinanceCandleSource
from trailstop.positions.manager import PositionManager
from trailstop.strategies.calculator import StopCalculator
from trailstop.strategies.params import default_params
from trailstop.switching.evaluator import SwitchRuleEvaluator

logger = logging.getLogger("trailstop")


def _binance(settings: Settings) -> BinanceCandleSource:
    return BinanceCandleSource(
        settings.binance_api_key,
        settings.binance_api_secret,
        testnet=settings.use_testnet,
        timeout_s=settings.request_timeout_s,
    )


def _print_result(result: BacktestResult) -> None:
    m = result.performance
    print(f"\n--- Backtest: {result.config.symbol} / {result.config.params.kind.value} ---")
    print(f"Candles: {result.candles_processed}")
    print(f"Total trades: {m.total_trades} (wins: {m.winning_trades}, losses: {m.losing_trades})")
    print(f"Total return: {m.total_return:.2f} ({m.total_return_percent:.2f}%)")
    print(f"Sharpe ratio: {m.sharpe_ratio:.2f}")
    print(f"Sortino ratio: {m.sortino_ratio:.2f}")
    print(f"Max drawdown: {m.max_drawdown:.2f} ({m.max_drawdown_percent:.2f}%)")
    print(f"Win rate: {m.win_rate*100:.1f}%")
    print(f"Profit factor: {m.profit_factor:.2f}")
    print(f"Expectancy: {m.expectancy:.2f} USD/trade")
    print(f"Avg holding: {m.avg_holding_hours:.1f}h, trailing efficiency: {m.trailing_efficiency*100:.1f}%")


def run_backtest(args: argparse.Namespace) -> int:
    """Backtest one strategy, or every strategy in parallel with --compare."""
    settings = load_settings(args.config, ROOT)
    setup_logging(settings.log_level, settings.log_dir, settings.log_file)
    if args.csv:
        source: CandleSource = CsvCandleSource(files={args.symbol: args.csv})
    else:
        source = _binance(settings)
    candles = source.get_candles(args.symbol, settings.timeframe, args.limit)
    if not candles:
        logger.error("No candles for %s", args.symbol)
        return 1

    kinds = list(StrategyKind) if args.compare else [StrategyKind(args.strategy or settings.default_strategy)]
    take_profit = args.take_profit if args.take_profit is not None else settings.backtest_take_profit_percent
    jobs = []
    for kind in kinds:
        config = BacktestConfig(
            symbol=args.symbol,
            params=default_params(kind, settings),
            side=Side(args.side),
            initial_capital=settings.backtest_initial_capital,
            position_size=settings.backtest_position_size,
            max_positions=settings.backtest_max_positions,
            max_loss_percent=settings.default_max_loss,
            take_profit_percent=take_profit,
            entry_condition=args.entry or settings.backtest_entry_condition,
            timeframe=settings.timeframe,
        )
        jobs.append((config, candles))
    for result in run_backtests(jobs, max_workers=args.workers):
        _print_result(result)
    return 0


def run_monitor(args: argparse.Namespace) -> int:
    """Trail one position until it triggers or Ctrl+C."""
    settings = load_settings(args.config, ROOT)
    setup_logging(settings.log_level, settings.log_dir, settings.log_file)
    memory = InMemoryAlertSink()
    alerts = FanOutAlertSink([memory])
    if settings.telegram_bot_token and settings.telegram_chat_id:
        alerts.add(TelegramAlertSink(settings.telegram_bot_token, settings.telegram_chat_id))
    manager = PositionManager(
        source=_binance(settings),
        settings=settings,
        alerts=alerts,
        evaluator=SwitchRuleEvaluator() if args.switching else None,
        calculator=StopCalculator(settings.default_trailing_percent),
    )
    position = manager.create_position(
        symbol=args.symbol,
        side=args.side,
        quantity=args.quantity,
        entry_price=args.entry_price,
        strategy=args.strategy,
        trailing_percent=args.trailing_percent,
        activation_price=args.activation,
        take_profit_price=args.take_profit_price,
    )
    print(f"Position {position.id}: {position.side.value} {position.symbol} entry={position.entry_price} stop={position.stop_loss_price:.8g}")
    manager.start_monitoring()
    try:
        while True:
            time.sleep(1)
            current = manager.get_position(position.id)
            if current is None or not current.is_live:
                break
    except KeyboardInterrupt:
        logger.info("Shutdown by user")
    finally:
        manager.stop_monitoring()
    final = manager.get_position(position.id)
    if final is not None:
        print(f"Final: status={final.status.value} stop={final.stop_loss_price:.8g} pnl={final.unrealized_pnl:.4f} ({final.unrealized_pnl_percent:.2f}%)")
        send_telegram(
            f"Trailing stop ended | {final.symbol} | {final.status.value} | pnl {final.unrealized_pnl_percent:.2f}%",
            settings.telegram_bot_token,
            settings.telegram_chat_id,
        )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Trailing stop CLI")
    parser.add_argument("mode", choices=["backtest", "monitor"], help="Run backtest or live monitor")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--symbol", default="BTCUSDT")
    parser.add_argument("--side", choices=[s.value for s in Side], default="long")
    parser.add_argument("--strategy", choices=[k.value for k in StrategyKind], default=None)
    # backtest
    parser.add_argument("--csv", type=Path, default=None, help="OHLCV CSV instead of exchange klines")
    parser.add_argument("--limit", type=int, default=500, help="Candles to backtest")
    parser.add_argument("--entry", default=None, help="Entry condition: always, trend_up, trend_down, breakout, pullback")
    parser.add_argument("--take-profit", type=float, default=None, help="Take profit percent")
    parser.add_argument("--compare", action="store_true", help="Backtest every strategy")
    parser.add_argument("--workers", type=int, default=None, help="Processes for --compare")
    # monitor
    parser.add_argument("--quantity", type=float, default=0.001)
    parser.add_argument("--entry-price", type=float, default=None)
    parser.add_argument("--trailing-percent", type=float, default=None)
    parser.add_argument("--activation", type=float, default=None, help="Activation price")
    parser.add_argument("--take-profit-price", type=float, default=None)
    parser.add_argument("--switching", action="store_true", help="Enable strategy switching rules")
    args = parser.parse_args()
    if args.mode == "backtest":
        return run_backtest(args)
    return run_monitor(args)


if __name__ == "__main__":
    exit(main())
