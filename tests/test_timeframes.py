"""Unit tests for utils.timeframes."""

import pytest
from trailstop.utils.timeframes import periods_per_year, timeframe_minutes, timeframe_ms


def test_timeframe_minutes():
    assert timeframe_minutes("5m") == 5
    assert timeframe_minutes("1h") == 60
    assert timeframe_minutes("1d") == 1440
    assert timeframe_minutes("1w") == 10080


def test_timeframe_ms():
    assert timeframe_ms("1m") == 60_000
    assert timeframe_ms("4h") == 14_400_000


@pytest.mark.parametrize("tf", ["1x", "0m", "h", "-5m"])
def test_timeframe_invalid(tf):
    with pytest.raises(ValueError):
        timeframe_minutes(tf)


def test_periods_per_year():
    assert periods_per_year("1h") == pytest.approx(8760.0)
    assert periods_per_year("1d") == pytest.approx(365.0)
