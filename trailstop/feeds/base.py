"""Abstract candle source plus DataFrame conversion and a CSV-backed source."""

from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pandas as pd

from trailstop.core.errors import PriceUnavailableError
from trailstop.core.types import Candle

logger = logging.getLogger("trailstop.feeds")

OHLCV = ["open", "high", "low", "close", "volume"]


class CandleSource(ABC):
    """Market data: last price and closed candles, ascending by timestamp."""

    @abstractmethod
    def get_current_price(self, symbol: str) -> float:
        """Last traded price. Raises on failure."""
        pass

    @abstractmethod
    def get_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        """Up to `limit` most recent closed candles, oldest first. May return fewer."""
        pass


def _timestamps_ms(df: pd.DataFrame) -> pd.Series:
    if "timestamp" in df.columns:
        col = df["timestamp"]
    elif "open_time" in df.columns:
        col = df["open_time"]
    elif "time" in df.columns:
        col = df["time"]
    else:
        raise ValueError("frame needs a timestamp, open_time or time column")
    if pd.api.types.is_datetime64_any_dtype(col):
        if getattr(col.dt, "tz", None) is not None:
            col = col.dt.tz_convert("UTC").dt.tz_localize(None)
        return (col - pd.Timestamp(0)) // pd.Timedelta(milliseconds=1)
    if col.dtype == object:
        parsed = pd.to_datetime(col, utc=True).dt.tz_localize(None)
        return (parsed - pd.Timestamp(0)) // pd.Timedelta(milliseconds=1)
    return col.astype("int64")


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    """
    DataFrame (timestamp|open_time|time, open, high, low, close, volume) -> candles.
    Sorted ascending; duplicate timestamps keep the last row.
    """
    if df.empty:
        return []
    out = pd.DataFrame({"timestamp": _timestamps_ms(df).values})
    for col in OHLCV:
        out[col] = df[col].astype(float).values
    out = out.drop_duplicates(subset="timestamp", keep="last").sort_values("timestamp")
    return [
        Candle(
            timestamp=int(row.timestamp),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in out.itertuples(index=False)
    ]


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candles -> DataFrame with a UTC `time` column, as the backtest indicators expect."""
    df = pd.DataFrame(
        [(c.timestamp, c.open, c.high, c.low, c.close, c.volume) for c in candles],
        columns=["timestamp"] + OHLCV,
    )
    df["time"] = pd.to_datetime(df["timestamp"], unit="ms", utc=True)
    return df


class CsvCandleSource(CandleSource):
    """
    Candles from a CSV file (or an in-memory frame) per symbol. The current price is the
    last close. Used for backtests and offline replay.
    """

    def __init__(self, files: Optional[Dict[str, Union[str, Path]]] = None, frames: Optional[Dict[str, pd.DataFrame]] = None):
        self._candles: Dict[str, List[Candle]] = {}
        for symbol, path in (files or {}).items():
            self._candles[symbol] = frame_to_candles(pd.read_csv(path))
            logger.info("Loaded %d candles for %s from %s", len(self._candles[symbol]), symbol, path)
        for symbol, frame in (frames or {}).items():
            self._candles[symbol] = frame_to_candles(frame)

    def symbols(self) -> List[str]:
        return list(self._candles)

    def get_current_price(self, symbol: str) -> float:
        candles = self._candles.get(symbol)
        if not candles:
            raise PriceUnavailableError(f"no candles loaded for {symbol}")
        return candles[-1].close

    def get_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        candles = self._candles.get(symbol, [])
        return list(candles[-limit:]) if limit > 0 else []
