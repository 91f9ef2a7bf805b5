"""
Load settings from config.yaml and .env. Exchange and Telegram secrets only from env.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from trailstop.core.types import StrategyKind


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


@dataclass
class FibonacciSettings:
    lookback_period: int = 20
    default_level: float = 0.618


@dataclass
class BollingerSettings:
    period: int = 20
    std_dev: float = 2.0


@dataclass
class VolumeProfileSettings:
    period: int = 50
    value_area_percent: float = 70.0


@dataclass
class SmartMoneySettings:
    order_block_period: int = 10
    volume_multiplier: float = 2.0


@dataclass
class IchimokuSettings:
    tenkan_period: int = 9
    kijun_period: int = 26
    senkou_period: int = 52


@dataclass
class PivotSettings:
    type: str = "standard"


@dataclass
class SupportResistanceSettings:
    lookback_period: int = 20


@dataclass
class DynamicSettings:
    """Regime thresholds for the dynamic meta-strategy. Hand-tuned, not derived."""
    min_candles: int = 50
    regime_lookback: int = 50
    analysis_period: int = 20
    trending_r2: float = 0.6
    ranging_ratio: float = 0.7
    strong_trend: float = 0.7
    low_volatility: float = 0.3
    high_volatility: float = 0.7
    max_band_distance_percent: float = 5.0


@dataclass
class HybridSettings:
    atr_weight: float = 0.3
    fibonacci_weight: float = 0.4
    volume_profile_weight: float = 0.3


def load_settings(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Settings":
    """Load config.yaml and overlay with env. Returns Settings."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Env overrides (for secrets and overrides)
    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    trailing = data.get("trailing", {})
    strategies = data.get("strategies", {})
    monitoring = data.get("monitoring", {})
    api = data.get("api", {})
    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})
    backtest = data.get("backtest", {})

    default_strategy = env("DEFAULT_STRATEGY", trailing.get("default_strategy", "percentage")).lower()
    try:
        strategy_kind = StrategyKind(default_strategy)
    except ValueError:
        strategy_kind = StrategyKind.PERCENTAGE

    fib = strategies.get("fibonacci", {})
    boll = strategies.get("bollinger", {})
    vp = strategies.get("volume_profile", {})
    sm = strategies.get("smart_money", {})
    ichi = strategies.get("ichimoku", {})
    pivot = strategies.get("pivot", {})
    sr = strategies.get("support_resistance", {})
    dyn = strategies.get("dynamic", {})
    hyb = strategies.get("hybrid", {})

    return Settings(
        # Trailing defaults
        default_strategy=strategy_kind,
        default_trailing_percent=env_float("DEFAULT_TRAILING_PERCENT", trailing.get("default_trailing_percent", 2.0)),
        default_max_loss=env_float("DEFAULT_MAX_LOSS", trailing.get("default_max_loss", 5.0)),
        atr_period=env_int("ATR_PERIOD", trailing.get("atr_period", 14)),
        atr_multiplier=env_float("ATR_MULTIPLIER", trailing.get("atr_multiplier", 2.0)),
        volatility_lookback=env_int("VOLATILITY_LOOKBACK", trailing.get("volatility_lookback", 20)),
        volatility_multiplier=env_float("VOLATILITY_MULTIPLIER", trailing.get("volatility_multiplier", 1.5)),
        max_positions=env_int("MAX_POSITIONS", trailing.get("max_positions", 10)),
        max_risk_per_position=env_float("MAX_RISK_PER_POSITION", trailing.get("max_risk_per_position", 2.0)),
        # Monitoring
        update_interval_ms=env_int("UPDATE_INTERVAL_MS", monitoring.get("update_interval_ms", 5000)),
        price_change_threshold=env_float("PRICE_CHANGE_THRESHOLD", monitoring.get("price_change_threshold", 0.1)),
        timeframe=env("TIMEFRAME", monitoring.get("timeframe", "1h")),
        candle_limit=env_int("CANDLE_LIMIT", monitoring.get("candle_limit", 200)),
        price_cache_max_age_ms=env_int("PRICE_CACHE_MAX_AGE_MS", monitoring.get("price_cache_max_age_ms", 60000)),
        # Strategy blocks
        fibonacci=FibonacciSettings(
            lookback_period=int(fib.get("lookback_period", 20)),
            default_level=float(fib.get("default_level", 0.618)),
        ),
        bollinger=BollingerSettings(
            period=int(boll.get("period", 20)),
            std_dev=float(boll.get("std_dev", 2.0)),
        ),
        volume_profile=VolumeProfileSettings(
            period=int(vp.get("period", 50)),
            value_area_percent=float(vp.get("value_area_percent", 70.0)),
        ),
        smart_money=SmartMoneySettings(
            order_block_period=int(sm.get("order_block_period", 10)),
            volume_multiplier=float(sm.get("volume_multiplier", 2.0)),
        ),
        ichimoku=IchimokuSettings(
            tenkan_period=int(ichi.get("tenkan_period", 9)),
            kijun_period=int(ichi.get("kijun_period", 26)),
            senkou_period=int(ichi.get("senkou_period", 52)),
        ),
        pivot=PivotSettings(
            type=str(pivot.get("type", "standard")),
        ),
        support_resistance=SupportResistanceSettings(
            lookback_period=int(sr.get("lookback_period", 20)),
        ),
        dynamic=DynamicSettings(**{k: v for k, v in dyn.items() if k in DynamicSettings.__dataclass_fields__}),
        hybrid=HybridSettings(**{k: v for k, v in hyb.items() if k in HybridSettings.__dataclass_fields__}),
        # API (env only; never put keys in config.yaml)
        binance_api_key=env("BINANCE_API_KEY", ""),
        binance_api_secret=env("BINANCE_API_SECRET", ""),
        use_testnet=env_bool("USE_TESTNET", api.get("use_testnet", True)),
        request_timeout_s=env_float("REQUEST_TIMEOUT_S", api.get("request_timeout_s", 10.0)),
        # Telegram
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", telegram.get("chat_id", "")),
        # Logging
        log_level=env("LOG_LEVEL", logging_cfg.get("level", "INFO")),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "trailstop.log"),
        # Backtest
        backtest_initial_capital=float(backtest.get("initial_capital", 10000.0)),
        backtest_position_size=float(backtest.get("position_size", 0.1)),
        backtest_max_positions=int(backtest.get("max_positions", 1)),
        backtest_entry_condition=str(backtest.get("entry_condition", "always")),
        backtest_take_profit_percent=backtest.get("take_profit_percent"),
    )


class Settings:
    """Unified configuration. Treat as read-only after load."""

    __slots__ = (
        "default_strategy", "default_trailing_percent", "default_max_loss",
        "atr_period", "atr_multiplier", "volatility_lookback", "volatility_multiplier",
        "max_positions", "max_risk_per_position",
        "update_interval_ms", "price_change_threshold", "timeframe", "candle_limit", "price_cache_max_age_ms",
        "fibonacci", "bollinger", "volume_profile", "smart_money", "ichimoku", "pivot",
        "support_resistance", "dynamic", "hybrid",
        "binance_api_key", "binance_api_secret", "use_testnet", "request_timeout_s",
        "telegram_bot_token", "telegram_chat_id",
        "log_level", "log_dir", "log_file",
        "backtest_initial_capital", "backtest_position_size", "backtest_max_positions",
        "backtest_entry_condition", "backtest_take_profit_percent",
    )

    def __init__(
        self,
        default_strategy: StrategyKind = StrategyKind.PERCENTAGE,
        default_trailing_percent: float = 2.0,
        default_max_loss: float = 5.0,
        atr_period: int = 14,
        atr_multiplier: float = 2.0,
        volatility_lookback: int = 20,
        volatility_multiplier: float = 1.5,
        max_positions: int = 10,
        max_risk_per_position: float = 2.0,
        update_interval_ms: int = 5000,
        price_change_threshold: float = 0.1,
        timeframe: str = "1h",
        candle_limit: int = 200,
        price_cache_max_age_ms: int = 60000,
        fibonacci: Optional[FibonacciSettings] = None,
        bollinger: Optional[BollingerSettings] = None,
        volume_profile: Optional[VolumeProfileSettings] = None,
        smart_money: Optional[SmartMoneySettings] = None,
        ichimoku: Optional[IchimokuSettings] = None,
        pivot: Optional[PivotSettings] = None,
        support_resistance: Optional[SupportResistanceSettings] = None,
        dynamic: Optional[DynamicSettings] = None,
        hybrid: Optional[HybridSettings] = None,
        binance_api_key: str = "",
        binance_api_secret: str = "",
        use_testnet: bool = True,
        request_timeout_s: float = 10.0,
        telegram_bot_token: str = "",
        telegram_chat_id: str = "",
        log_level: str = "INFO",
        log_dir: Path = None,
        log_file: str = "trailstop.log",
        backtest_initial_capital: float = 10000.0,
        backtest_position_size: float = 0.1,
        backtest_max_positions: int = 1,
        backtest_entry_condition: str = "always",
        backtest_take_profit_percent: Optional[float] = None,
    ):
        self.default_strategy = StrategyKind(default_strategy)
        self.default_trailing_percent = default_trailing_percent
        self.default_max_loss = default_max_loss
        self.atr_period = atr_period
        self.atr_multiplier = atr_multiplier
        self.volatility_lookback = volatility_lookback
        self.volatility_multiplier = volatility_multiplier
        self.max_positions = max_positions
        self.max_risk_per_position = max_risk_per_position
        self.update_interval_ms = update_interval_ms
        self.price_change_threshold = price_change_threshold
        self.timeframe = timeframe
        self.candle_limit = candle_limit
        self.price_cache_max_age_ms = price_cache_max_age_ms
        self.fibonacci = fibonacci or FibonacciSettings()
        self.bollinger = bollinger or BollingerSettings()
        self.volume_profile = volume_profile or VolumeProfileSettings()
        self.smart_money = smart_money or SmartMoneySettings()
        self.ichimoku = ichimoku or IchimokuSettings()
        self.pivot = pivot or PivotSettings()
        self.support_resistance = support_resistance or SupportResistanceSettings()
        self.dynamic = dynamic or DynamicSettings()
        self.hybrid = hybrid or HybridSettings()
        self.binance_api_key = binance_api_key
        self.binance_api_secret = binance_api_secret
        self.use_testnet = use_testnet
        self.request_timeout_s = request_timeout_s
        self.telegram_bot_token = telegram_bot_token
        self.telegram_chat_id = telegram_chat_id
        self.log_level = log_level
        self.log_dir = Path(log_dir) if log_dir else Path("logs")
        self.log_file = log_file
        self.backtest_initial_capital = backtest_initial_capital
        self.backtest_position_size = backtest_position_size
        self.backtest_max_positions = backtest_max_positions
        self.backtest_entry_condition = backtest_entry_condition
        self.backtest_take_profit_percent = backtest_take_profit_percent
