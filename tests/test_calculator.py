"""Unit tests for strategies.calculator."""

import math

import pytest

from trailstop.core.errors import InvalidParameterError
from trailstop.core.types import Candle, StrategyKind
from trailstop.strategies.calculator import StopCalculator, compute_stop
from trailstop.strategies.params import (
    AtrParams,
    BollingerParams,
    DynamicParams,
    FibonacciParams,
    HybridParams,
    IchimokuParams,
    PercentageParams,
    PivotPointsParams,
    SmartMoneyParams,
    SupportResistanceParams,
    VolumeProfileParams,
)

from conftest import T0, HOUR_MS, flat_candles, make_candles


def swing_candles(high=110.0, low=90.0, n=20):
    """n candles inside [low, high] touching both extremes."""
    out = []
    for i in range(n):
        h = high if i == 5 else 105.0
        l = low if i == 12 else 95.0
        out.append(Candle(T0 + i * HOUR_MS, 100.0, h, l, 100.0, 10.0))
    return out


def test_percentage_long_and_short():
    calc = StopCalculator()
    long_res = calc.compute(PercentageParams(5.0), 100.0, 100.0, True)
    short_res = calc.compute(PercentageParams(5.0), 100.0, 100.0, False)
    assert long_res.stop_loss == pytest.approx(95.0, abs=1e-9)
    assert short_res.stop_loss == pytest.approx(105.0, abs=1e-9)
    assert long_res.confidence == 0.7
    assert long_res.fallback_reason is None


def test_atr_flat_series_stop_equals_extreme():
    candles = flat_candles(30, price=100.0)
    res = compute_stop(AtrParams(14, 2.0), 100.0, 100.0, True, candles, highest_price=104.0, lowest_price=99.0)
    assert res.indicators["atr"] == 0.0
    assert res.stop_loss == 104.0
    short = compute_stop(AtrParams(14, 2.0), 100.0, 100.0, False, candles, highest_price=104.0, lowest_price=99.0)
    assert short.stop_loss == 99.0


def test_atr_uses_true_range():
    # constant 2-point bars, no gaps: TR = 2
    candles = [Candle(T0 + i, 100, 101, 99, 100, 1) for i in range(16)]
    res = compute_stop(AtrParams(14, 1.5), 100.0, 100.0, True, candles, highest_price=102.0)
    assert res.indicators["atr"] == pytest.approx(2.0)
    assert res.stop_loss == pytest.approx(102.0 - 3.0)


def test_fibonacci_618_long():
    res = compute_stop(FibonacciParams(level=0.618, lookback_period=20), 100.0, 100.0, True, swing_candles())
    assert res.stop_loss == pytest.approx(110 - 20 * 0.618)
    assert res.stop_loss == pytest.approx(97.64)
    assert set(res.indicators["retracements"]) == {"0.236", "0.382", "0.5", "0.618", "0.786"}
    assert res.confidence == 0.85


def test_fibonacci_short_mirrors():
    res = compute_stop(FibonacciParams(level=0.382), 100.0, 100.0, False, swing_candles())
    assert res.stop_loss == pytest.approx(90 + 20 * 0.382)


def test_bollinger_bands_population_std():
    closes = [100.0, 102.0] * 10
    candles = make_candles(closes)
    res = compute_stop(BollingerParams(period=20, std_dev=2.0), 101.0, 100.0, True, candles)
    # mean 101, population std 1
    assert res.indicators["middle"] == pytest.approx(101.0)
    assert res.stop_loss == pytest.approx(99.0)
    short = compute_stop(BollingerParams(period=20, std_dev=2.0), 101.0, 100.0, False, candles)
    assert short.stop_loss == pytest.approx(103.0)


def test_volume_profile_poc_first_maximum():
    candles = [Candle(T0 + i, 100, 110, 90, 100 + i, 10.0) for i in range(10)]
    candles[3] = Candle(T0 + 3, 100, 110, 90, 104.0, 50.0)
    candles[7] = Candle(T0 + 7, 100, 110, 90, 108.0, 50.0)
    res = compute_stop(VolumeProfileParams(period=10, value_area_percent=70), 105.0, 100.0, True, candles)
    assert res.indicators["poc"] == 104.0
    # range 20 * 0.7 / 2 = 7
    assert res.stop_loss == pytest.approx(97.0)
    assert res.resistance_level == pytest.approx(111.0)


def test_ichimoku_cloud_bottom_for_long():
    candles = [Candle(T0 + i, 100, 100 + i, 100 - i, 100, 1) for i in range(52)]
    res = compute_stop(IchimokuParams(), 100.0, 100.0, True, candles)
    # symmetric ranges: every midpoint is 100
    assert res.stop_loss == pytest.approx(100.0)
    assert res.indicators["senkou_a"] == pytest.approx(100.0)


def test_pivot_standard_picks_highest_level_below_price():
    candles = [Candle(T0, 100, 110, 90, 100, 1)]
    # P=100, S1=90, S2=80, R1=110, R2=120
    res = compute_stop(PivotPointsParams("standard"), 105.0, 100.0, True, candles)
    assert res.stop_loss == pytest.approx(100.0)
    res = compute_stop(PivotPointsParams("standard"), 95.0, 100.0, True, candles)
    assert res.stop_loss == pytest.approx(90.0)
    res = compute_stop(PivotPointsParams("standard"), 95.0, 100.0, False, candles)
    assert res.stop_loss == pytest.approx(100.0)


def test_pivot_no_level_below_uses_s1():
    candles = [Candle(T0, 100, 110, 90, 100, 1)]
    res = compute_stop(PivotPointsParams("standard"), 70.0, 100.0, True, candles)
    assert res.stop_loss == pytest.approx(90.0)


def test_pivot_camarilla_levels():
    candles = [Candle(T0, 100, 112, 100, 106, 1)]
    res = compute_stop(PivotPointsParams("camarilla"), 200.0, 100.0, False, candles)
    # all R levels below price -> R1 = C + 1.1*12/12
    assert res.stop_loss == pytest.approx(107.1)


def test_smart_money_nearest_block_below():
    candles = [Candle(T0 + i, 100, 101, 99, 100, 10.0) for i in range(20)]
    candles[14] = Candle(T0 + 14, 100, 101, 96.0, 100, 50.0)
    candles[17] = Candle(T0 + 17, 100, 101, 97.5, 100, 50.0)
    res = compute_stop(SmartMoneyParams(order_block_period=10, volume_multiplier=2.0), 100.0, 100.0, True, candles)
    assert res.stop_loss == 97.5
    assert res.confidence == 0.88


def test_smart_money_without_blocks_falls_back():
    candles = flat_candles(20)
    res = compute_stop(SmartMoneyParams(), 100.0, 100.0, True, candles)
    assert res.strategy_used == StrategyKind.PERCENTAGE
    assert res.stop_loss == pytest.approx(98.0)
    assert res.confidence == 0.5


def test_support_resistance_five_candle_extremum():
    lows = [99, 98, 95, 98, 99, 99, 98, 97, 98, 99]
    candles = [Candle(T0 + i, 100, 101, lo, 100, 1) for i, lo in enumerate(lows)]
    res = compute_stop(SupportResistanceParams(lookback_period=10), 100.0, 100.0, True, candles)
    # 95 (index 2) and 97 (index 7) are strict 5-candle lows; the highest below price wins
    assert res.stop_loss == 97.0


def test_support_resistance_without_levels_falls_back():
    res = compute_stop(SupportResistanceParams(), 100.0, 100.0, True, flat_candles(20))
    assert res.fallback_reason == "insufficient_data"
    assert res.stop_loss == pytest.approx(98.0)


@pytest.mark.parametrize("params", [
    AtrParams(),
    FibonacciParams(),
    BollingerParams(),
    VolumeProfileParams(),
    IchimokuParams(),
    SmartMoneyParams(),
    DynamicParams(),
])
def test_insufficient_candles_falls_back_to_percentage(params):
    res = compute_stop(params, 100.0, 100.0, True, flat_candles(3))
    assert res.strategy_used == StrategyKind.PERCENTAGE
    assert res.fallback_reason == "insufficient_data"
    assert res.confidence == 0.5
    assert res.stop_loss == pytest.approx(98.0)


def test_calculation_error_falls_back():
    calc = StopCalculator(fallback_trailing_percent=3.0)

    def boom(params, inputs):
        raise ZeroDivisionError("bad maths")

    calc._dispatch[StrategyKind.FIBONACCI] = boom
    res = calc.compute(FibonacciParams(), 100.0, 100.0, True, flat_candles(30))
    assert res.fallback_reason == "calculation_error"
    assert res.stop_loss == pytest.approx(97.0)


def test_non_positive_stop_falls_back():
    # mean 50.5, std 49.5: lower band is negative
    candles = make_candles([1.0, 100.0] * 10)
    res = compute_stop(BollingerParams(period=20, std_dev=2.0), 50.0, 50.0, True, candles)
    assert res.fallback_reason == "invalid_result"
    assert res.stop_loss == pytest.approx(49.0)


@pytest.mark.parametrize("price", [0.0, -1.0, float("nan"), float("inf")])
def test_invalid_current_price_raises(price):
    with pytest.raises(ValueError):
        compute_stop(PercentageParams(), price, 100.0, True)


def test_hybrid_weighted_average():
    candles = swing_candles()
    params = HybridParams()
    res = compute_stop(params, 100.0, 100.0, True, candles, highest_price=100.0, lowest_price=100.0)
    parts = res.indicators["components"]
    expected = (
        0.3 * parts["atr"]["stop"] + 0.4 * parts["fibonacci"]["stop"] + 0.3 * parts["volume_profile"]["stop"]
    )
    assert res.stop_loss == pytest.approx(expected)
    # 20 candles < 50: volume profile falls back on its own
    assert parts["volume_profile"]["fallback_reason"] == "insufficient_data"
    assert res.fallback_reason is None
    # only 70% of the weight came from real component stops
    assert res.confidence == pytest.approx(0.92 * 0.7)


def test_hybrid_full_confidence_when_every_component_computes():
    candles = make_candles([100 + 5 * math.sin(i / 4) for i in range(60)], spread=1.0, volume=10.0)
    res = compute_stop(HybridParams(), 100.0, 100.0, True, candles, 105.0, 95.0)
    assert all(p["fallback_reason"] is None for p in res.indicators["components"].values())
    assert res.confidence == 0.92


def test_hybrid_without_data_reports_fallback():
    res = compute_stop(HybridParams(), 100.0, 100.0, True, [])
    assert res.strategy_used == StrategyKind.PERCENTAGE
    assert res.fallback_reason == "insufficient_data"
    assert res.confidence == 0.5
    assert res.indicators["requested_strategy"] == "hybrid"
    assert res.stop_loss == pytest.approx(98.0)


def test_dynamic_reports_route():
    closes = [100 + i for i in range(60)]
    res = compute_stop(DynamicParams(), 159.0, 100.0, True, make_candles(closes, spread=0.5), highest_price=159.0)
    assert res.strategy_used == StrategyKind.DYNAMIC
    assert res.indicators["regime"] == "trending"
    assert res.indicators["selected_strategy"] == "atr"
    assert 0 <= res.indicators["volatility"] <= 1


def test_compute_is_deterministic_and_does_not_mutate():
    candles = make_candles([100 + (i % 7) for i in range(60)], spread=1.0)
    snapshot = list(candles)
    for params in (AtrParams(), FibonacciParams(), DynamicParams(), HybridParams()):
        a = compute_stop(params, 103.0, 100.0, True, candles, 106.0, 99.0)
        b = compute_stop(params, 103.0, 100.0, True, candles, 106.0, 99.0)
        assert a == b
    assert candles == snapshot


def test_results_are_finite_and_positive_for_every_strategy():
    candles = make_candles([100 + 5 * math.sin(i / 4) for i in range(80)], spread=1.0, volume=10.0)
    for params in (
        PercentageParams(), AtrParams(), FibonacciParams(), BollingerParams(), VolumeProfileParams(),
        IchimokuParams(), PivotPointsParams(), SmartMoneyParams(), SupportResistanceParams(),
        DynamicParams(), HybridParams(),
    ):
        res = compute_stop(params, 100.0, 100.0, True, candles, 105.0, 95.0)
        assert math.isfinite(res.stop_loss) and res.stop_loss > 0
        assert 0 <= res.confidence <= 1


def test_params_validation():
    with pytest.raises(InvalidParameterError):
        FibonacciParams(level=0.5555)
    with pytest.raises(InvalidParameterError):
        AtrParams(atr_period=0)
    with pytest.raises(ValueError):
        PercentageParams(trailing_percent=-1)
    with pytest.raises(InvalidParameterError):
        PivotPointsParams("weekly")


@pytest.mark.parametrize("overrides", [
    {"bollinger_period": 100},
    {"sr_lookback": 100},
    {"regime_lookback": 100},
    {"fibonacci": FibonacciParams(lookback_period=100)},
])
def test_dynamic_short_route_window_is_insufficient_data(overrides, caplog):
    params = DynamicParams(**overrides)
    assert params.min_candles == 100
    candles = make_candles([100.0 + (6.0 if i % 2 else -6.0) for i in range(60)], spread=1.0)
    with caplog.at_level("WARNING", logger="trailstop"):
        res = compute_stop(params, 100.0, 100.0, True, candles)
    assert res.fallback_reason == "insufficient_data"
    assert res.indicators["requested_strategy"] == "dynamic"
    assert res.stop_loss == pytest.approx(98.0)
    assert not [r for r in caplog.records if r.levelname == "WARNING"]


def test_dynamic_params_reject_short_sr_lookback():
    with pytest.raises(InvalidParameterError):
        DynamicParams(sr_lookback=4)
