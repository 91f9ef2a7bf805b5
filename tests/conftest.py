"""Shared fixtures: fake candle source, controllable clock, candle builders."""

from typing import Dict, List, Optional

import pytest

from trailstop.alerts.base import InMemoryAlertSink
from trailstop.core.config import Settings
from trailstop.core.types import Candle
from trailstop.feeds.base import CandleSource

HOUR_MS = 3_600_000
T0 = 1_700_000_000_000


def make_candles(closes, spread: float = 0.0, volume: float = 100.0, start: int = T0, step: int = HOUR_MS) -> List[Candle]:
    """Candles with open=previous close, high/low = close +/- spread."""
    out = []
    prev = closes[0]
    for i, c in enumerate(closes):
        out.append(Candle(
            timestamp=start + i * step,
            open=prev,
            high=max(prev, c) + spread,
            low=min(prev, c) - spread,
            close=c,
            volume=volume,
        ))
        prev = c
    return out


def flat_candles(n: int, price: float = 100.0, volume: float = 100.0) -> List[Candle]:
    return [Candle(T0 + i * HOUR_MS, price, price, price, price, volume) for i in range(n)]


class FakeCandleSource(CandleSource):
    """Scripted prices per symbol. Set `fail` to make calls raise."""

    def __init__(self, prices: Optional[Dict[str, float]] = None, candles: Optional[Dict[str, List[Candle]]] = None):
        self.prices = dict(prices or {})
        self.candles = dict(candles or {})
        self.fail = False
        self.price_calls = 0

    def get_current_price(self, symbol: str) -> float:
        self.price_calls += 1
        if self.fail:
            raise ConnectionError("source down")
        return self.prices[symbol]

    def get_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        if self.fail:
            raise ConnectionError("source down")
        return list(self.candles.get(symbol, []))[-limit:]


class FakeClock:
    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeCandleSource(prices={"BTCUSDT": 100.0})


@pytest.fixture
def alerts():
    return InMemoryAlertSink()


@pytest.fixture
def settings():
    return Settings()
