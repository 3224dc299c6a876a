from __future__ import annotations

import pytest

from conftest import make_candles, make_market_data
from crypto_signals.errors import ComputationError, InsufficientDataError
from crypto_signals.indicators.engine import (
    IndicatorEngine,
    adx,
    atr,
    bollinger_bands,
    ema,
    macd,
    rsi,
    stochastic,
    volume_profile,
)
from crypto_signals.indicators.models import IndicatorSignal, TrendStrength


def test_ema_of_constant_series_is_constant():
    assert ema([50.0] * 30, 10) == pytest.approx(50.0)


def test_ema_follows_rising_series():
    values = [float(i) for i in range(1, 41)]
    assert ema(values, 5) > ema(values, 20)


def test_rsi_all_gains_is_100():
    values = [100 + i for i in range(30)]
    assert rsi(values, 14) == 100.0


def test_rsi_all_losses_is_0():
    values = [100 - i for i in range(30)]
    assert rsi(values, 14) == pytest.approx(0.0)


def test_rsi_requires_period_plus_one_values():
    with pytest.raises(InsufficientDataError) as info:
        rsi([1.0] * 14, 14)
    assert info.value.required == 15
    assert info.value.actual == 14


def test_non_positive_period_is_rejected():
    with pytest.raises(ComputationError):
        ema([1.0, 2.0, 3.0], 0)


def test_macd_positive_histogram_on_accelerating_series():
    values = [100 * 1.01**i for i in range(60)]
    result = macd(values)
    assert result.line > 0
    assert result.histogram == pytest.approx(result.line - result.signal)


def test_macd_needs_slow_plus_signal_window():
    with pytest.raises(InsufficientDataError):
        macd([1.0] * 33, 12, 26, 9)
    macd([1.0 + i for i in range(34)], 12, 26, 9)


def test_bollinger_flat_window_collapses():
    bands = bollinger_bands([10.0] * 25, 20, 2.0)
    assert bands.upper == bands.middle == bands.lower == pytest.approx(10.0)


def test_stochastic_flat_window_sits_mid_range():
    flat = [10.0] * 20
    result = stochastic(flat, flat, flat, 14, 3)
    assert result.k == pytest.approx(50.0)
    assert result.d == pytest.approx(50.0)


def test_atr_and_adx_are_zero_for_flat_candles():
    flat = [10.0] * 40
    assert atr(flat, flat, flat, 14) == pytest.approx(0.0)
    assert adx(flat, flat, flat, 14) == 0.0


def test_volume_profile_defaults_without_volumes():
    profile = volume_profile([])
    assert profile.ratio == 1.0
    assert profile.sma == 0.0


def test_volume_profile_ratio_against_sma():
    profile = volume_profile([10.0] * 19 + [30.0], 20)
    assert profile.sma == pytest.approx(11.0)
    assert profile.ratio == pytest.approx(30.0 / 11.0)


def test_engine_on_rising_market_shows_divergence(rising_market):
    values = IndicatorEngine().compute(rising_market)

    assert values.rsi == 100.0
    assert values.ema_signal() is IndicatorSignal.BUY
    assert values.macd_signal() is IndicatorSignal.BUY
    assert values.rsi_signal() is IndicatorSignal.SELL
    assert values.stochastic_signal() is IndicatorSignal.SELL
    assert values.has_divergence()

    overall = values.overall_signal()
    assert set(overall.bullish) == {"EMA", "MACD"}
    assert set(overall.bearish) == {"RSI", "Stochastic"}
    assert overall.direction is IndicatorSignal.NEUTRAL


def test_engine_on_falling_market_is_bearish():
    data = make_market_data(make_candles(step=-0.004))
    values = IndicatorEngine().compute(data)
    assert values.ema_signal() is IndicatorSignal.SELL
    assert values.rsi_signal() is IndicatorSignal.BUY
    assert values.adx > 25
    assert values.trend_strength in (TrendStrength.STRONG, TrendStrength.VERY_STRONG)


def test_engine_raises_for_short_window():
    data = make_market_data(make_candles(count=30))
    with pytest.raises(InsufficientDataError):
        IndicatorEngine().compute(data)
