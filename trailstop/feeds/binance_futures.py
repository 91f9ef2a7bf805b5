"""
Binance USDT-M Futures candle source with retry and rate-limit handling.
Read-only: price and klines. The still-forming last kline is dropped.
"""

from __future__ import annotations
import logging
import time
from typing import Callable, List, Optional

import pandas as pd

from binance.client import Client
from binance.exceptions import BinanceAPIException

from trailstop.core.errors import PriceUnavailableError
from trailstop.core.types import Candle
from trailstop.feeds.base import CandleSource, frame_to_candles

logger = logging.getLogger("trailstop.feeds.binance")

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore",
]


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry on 429 or 418 (rate limit)."""
    def decorator(f):
        def wrapped(*args, **kwargs):
            last_exc = None
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    last_exc = e
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise
            raise last_exc
        return wrapped
    return decorator


def klines_to_frame(raw: list) -> pd.DataFrame:
    df = pd.DataFrame(raw, columns=KLINE_COLUMNS)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    df[["open_time", "close_time"]] = df[["open_time", "close_time"]].astype("int64")
    return df


class BinanceCandleSource(CandleSource):
    """Binance USDT-M Futures market data (testnet and live). Keys are optional for public data."""

    def __init__(
        self,
        api_key: str = "",
        api_secret: str = "",
        testnet: bool = True,
        timeout_s: float = 10.0,
        client: Optional[Client] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if client is not None:
            self._client = client
        else:
            self._client = Client(api_key or None, api_secret or None, requests_params={"timeout": timeout_s})
            if testnet:
                self._client.FUTURES_URL = "https://testnet.binancefuture.com/fapi"
                logger.info("Binance Futures: using TESTNET")
            else:
                logger.info("Binance Futures: using LIVE")
        self._clock = clock or (lambda: int(time.time() * 1000))

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_current_price(self, symbol: str) -> float:
        ticker = self._client.futures_symbol_ticker(symbol=symbol)
        try:
            return float(ticker["price"])
        except (KeyError, TypeError, ValueError) as e:
            raise PriceUnavailableError(f"bad ticker payload for {symbol}") from e

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_klines(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        raw = self._client.futures_klines(symbol=symbol, interval=interval, limit=limit)
        return klines_to_frame(raw)

    def get_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        # One extra so dropping the forming kline still leaves `limit` closed ones.
        df = self.get_klines(symbol, timeframe, limit + 1)
        if df.empty:
            return []
        closed = df[df["close_time"] < self._clock()]
        return frame_to_candles(closed)[-limit:]
