"""Utilities: timeframe conversion."""

from trailstop.utils.timeframes import periods_per_year, timeframe_minutes, timeframe_ms

__all__ = ["timeframe_minutes", "timeframe_ms", "periods_per_year"]
