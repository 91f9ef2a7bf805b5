"""Timeframe string conversions (Binance-style: '5m', '1h', '1d', '1w')."""

MINUTES_PER_YEAR = 365 * 24 * 60


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '5m', '1h', '1d', '1w') to minutes."""
    tf = tf.strip().lower()
    try:
        if tf.endswith("m"):
            value = int(tf[:-1])
        elif tf.endswith("h"):
            value = int(tf[:-1]) * 60
        elif tf.endswith("d"):
            value = int(tf[:-1]) * 60 * 24
        elif tf.endswith("w"):
            value = int(tf[:-1]) * 60 * 24 * 7
        else:
            raise ValueError(tf)
    except ValueError:
        raise ValueError(f"Unsupported timeframe: {tf}") from None
    if value <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return value


def timeframe_ms(tf: str) -> int:
    return timeframe_minutes(tf) * 60_000


def periods_per_year(tf: str) -> float:
    """Number of candles of this timeframe in a (365-day) year, for annualising ratios."""
    return MINUTES_PER_YEAR / timeframe_minutes(tf)
