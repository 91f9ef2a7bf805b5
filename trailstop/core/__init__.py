"""Core: settings, types, errors, logging."""

from trailstop.core.config import load_settings, Settings
from trailstop.core.types import (
    Alert,
    AlertType,
    BacktestTrade,
    Candle,
    Position,
    PositionStatus,
    Severity,
    Side,
    StrategyKind,
    SwitchEvent,
)
from trailstop.core.errors import (
    TrailStopError,
    InvalidPositionError,
    InvalidParameterError,
    PositionLimitError,
    PriceUnavailableError,
)
from trailstop.core.logger import setup_logging

__all__ = [
    "load_settings",
    "Settings",
    "Alert",
    "AlertType",
    "BacktestTrade",
    "Candle",
    "Position",
    "PositionStatus",
    "Severity",
    "Side",
    "StrategyKind",
    "SwitchEvent",
    "TrailStopError",
    "InvalidPositionError",
    "InvalidParameterError",
    "PositionLimitError",
    "PriceUnavailableError",
    "setup_logging",
]
