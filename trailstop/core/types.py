"""
Core data types: candles, positions, alerts, switch events, backtest trades.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from trailstop.strategies.params import StrategyParams


class Side(str, Enum):
    LONG = "long"
    SHORT = "short"


class StrategyKind(str, Enum):
    PERCENTAGE = "percentage"
    ATR = "atr"
    FIBONACCI = "fibonacci"
    BOLLINGER_BANDS = "bollinger_bands"
    VOLUME_PROFILE = "volume_profile"
    ICHIMOKU = "ichimoku"
    PIVOT_POINTS = "pivot_points"
    SMART_MONEY = "smart_money"
    SUPPORT_RESISTANCE = "support_resistance"
    DYNAMIC = "dynamic"
    HYBRID = "hybrid"


class PositionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TRIGGERED = "triggered"
    CANCELLED = "cancelled"
    ERROR = "error"


LIVE_STATUSES = frozenset({PositionStatus.PENDING, PositionStatus.ACTIVE})


class AlertType(str, Enum):
    ACTIVATION = "activation"
    ADJUSTMENT = "adjustment"
    TRIGGER = "trigger"
    STRATEGY_SWITCH = "strategy_switch"
    WARNING = "warning"


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


def new_id(prefix: str = "") -> str:
    """Random hex handle, optionally prefixed (e.g. 'alert_')."""
    return f"{prefix}{uuid.uuid4().hex}"


@dataclass(frozen=True)
class Candle:
    """OHLCV candle. timestamp is ms epoch of the candle open."""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class Position:
    """Trailing stop position state."""
    id: str
    symbol: str
    side: Side
    quantity: float
    entry_price: float
    current_price: float
    highest_price: float
    lowest_price: float
    strategy: StrategyKind
    params: "StrategyParams"
    max_loss_percent: float
    stop_loss_price: float
    status: PositionStatus
    created_at: int
    activation_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    activated_at: Optional[int] = None
    triggered_at: Optional[int] = None
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    max_profit_percent: float = 0.0
    max_drawdown_percent: float = 0.0
    support_level: Optional[float] = None
    resistance_level: Optional[float] = None
    stop_history: List[Tuple[int, float]] = field(default_factory=list)

    @property
    def is_long(self) -> bool:
        return self.side == Side.LONG

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES


@dataclass(frozen=True)
class Alert:
    """Structured event delivered to an AlertSink."""
    id: str
    type: AlertType
    message: str
    position_id: str
    timestamp: int
    severity: Severity
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SwitchEvent:
    """Immutable record of one strategy switch."""
    id: str
    position_id: str
    timestamp: int
    from_strategy: StrategyKind
    to_strategy: StrategyKind
    reason: str
    pnl_at_switch: float
    pnl_percent_at_switch: float
    market: Dict[str, float] = field(default_factory=dict)


@dataclass
class BacktestTrade:
    """Simulated trade: trailing state while open, realized fields once closed."""
    id: str
    side: Side
    strategy: StrategyKind
    entry_time: int
    entry_price: float
    quantity: float
    highest_price: float
    lowest_price: float
    stop_price: float
    entry_reason: str
    volume: float
    status: str = "open"  # "open" | "closed" | "stopped"
    take_profit_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    fees: float = 0.0
    exit_time: Optional[int] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None  # "trailing_stop" | "take_profit" | "max_holding_period" | "end_of_data"
    realized_pnl: Optional[float] = None
    rsi: Optional[float] = None
    atr: Optional[float] = None
    volatility: Optional[float] = None

    @property
    def is_long(self) -> bool:
        return self.side == Side.LONG

    @property
    def holding_hours(self) -> float:
        if self.exit_time is None:
            return 0.0
        return (self.exit_time - self.entry_time) / 3_600_000
