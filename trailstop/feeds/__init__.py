"""Market data sources and price cache."""

from trailstop.feeds.base import CandleSource, CsvCandleSource, candles_to_frame, frame_to_candles
from trailstop.feeds.cache import PriceCache

__all__ = ["CandleSource", "CsvCandleSource", "candles_to_frame", "frame_to_candles", "PriceCache"]
