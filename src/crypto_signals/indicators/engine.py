"""Technical indicators over candle windows.

Every function is pure and raises :class:`InsufficientDataError` when the
window is shorter than the indicator needs. EMAs are seeded with the first
sample (not an SMA) which is what ``ewm(adjust=False)`` computes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

import pandas as pd

from crypto_signals.data.models import MarketData
from crypto_signals.errors import ComputationError, InsufficientDataError
from crypto_signals.strategy.models import IndicatorSettings

from .models import (
    BollingerBands,
    EmaValues,
    IndicatorValues,
    MacdValues,
    StochasticValues,
    VolumeProfile,
)


def _series(values: Sequence[float]) -> pd.Series:
    return pd.Series(list(values), dtype="float64")


def _require(what: str, values: Sequence[float], required: int) -> None:
    if len(values) < required:
        raise InsufficientDataError(what, required, len(values))


def _check_period(what: str, period: int) -> None:
    if period < 1:
        raise ComputationError(f"{what} period must be positive, got {period}")


def ema(values: Sequence[float], period: int) -> float:
    _check_period("EMA", period)
    _require("EMA", values, period)
    return float(_series(values).ewm(span=period, adjust=False).mean().iloc[-1])


def rsi(values: Sequence[float], period: int = 14) -> float:
    _check_period("RSI", period)
    _require("RSI", values, period + 1)
    deltas = _series(values).diff().iloc[1:]
    gains = deltas.clip(lower=0)
    losses = (-deltas).clip(lower=0)

    avg_gain = float(gains.iloc[:period].mean())
    avg_loss = float(losses.iloc[:period].mean())
    for gain, loss in zip(gains.iloc[period:], losses.iloc[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return min(100.0, max(0.0, 100 - 100 / (1 + rs)))


def macd(
    values: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9
) -> MacdValues:
    """MACD line plus an EMA of the MACD-line history.

    The history holds ema_fast - ema_slow evaluated on every prefix from
    ``max(fast, slow)`` candles up to the full window. Both EMAs are causal
    so the prefix values are read straight off the full EWM series.
    """
    for what, period in (("MACD fast", fast), ("MACD slow", slow), ("MACD signal", signal)):
        _check_period(what, period)
    warmup = max(fast, slow)
    _require("MACD", values, warmup + signal - 1)
    closes = _series(values)
    fast_ema = closes.ewm(span=fast, adjust=False).mean()
    slow_ema = closes.ewm(span=slow, adjust=False).mean()
    history = (fast_ema - slow_ema).iloc[warmup - 1 :].reset_index(drop=True)
    line = float(history.iloc[-1])
    signal_line = float(history.ewm(span=signal, adjust=False).mean().iloc[-1])
    return MacdValues(line=line, signal=signal_line, histogram=line - signal_line)


def bollinger_bands(values: Sequence[float], period: int = 20, std_dev: float = 2.0) -> BollingerBands:
    _check_period("Bollinger", period)
    _require("Bollinger Bands", values, period)
    window = _series(values).iloc[-period:]
    middle = float(window.mean())
    deviation = float(window.std(ddof=0))
    return BollingerBands(
        upper=middle + deviation * std_dev,
        middle=middle,
        lower=middle - deviation * std_dev,
    )


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticValues:
    _check_period("Stochastic %K", k_period)
    _check_period("Stochastic %D", d_period)
    _require("Stochastic", closes, k_period)
    high = _series(highs)
    low = _series(lows)
    close = _series(closes)
    highest = high.rolling(k_period).max()
    lowest = low.rolling(k_period).min()
    span = highest - lowest
    # flat window: the close sits mid-range
    k_history = ((close - lowest) / span * 100).where(span > 0, 50.0).iloc[k_period - 1 :]
    k_history = k_history.clip(lower=0, upper=100)
    return StochasticValues(k=float(k_history.iloc[-1]), d=float(k_history.iloc[-d_period:].mean()))


def _true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    previous_close = close.shift(1)
    ranges = pd.concat(
        [high - low, (high - previous_close).abs(), (low - previous_close).abs()],
        axis=1,
    )
    return ranges.max(axis=1).iloc[1:]


def atr(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> float:
    _check_period("ATR", period)
    _require("ATR", closes, period + 1)
    tr = _true_range(_series(highs), _series(lows), _series(closes))
    return float(tr.iloc[-period:].mean())


def _wilder(values: pd.Series, period: int) -> float:
    smoothed = float(values.iloc[:period].mean())
    for value in values.iloc[period:]:
        smoothed = (smoothed * (period - 1) + value) / period
    return smoothed


def adx(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
) -> float:
    """Directional index from Wilder-smoothed DM+/DM-/TR.

    Returns the DX of the final bar; no second smoothing pass is applied.
    """
    _check_period("ADX", period)
    _require("ADX", closes, period * 2)
    high = _series(highs)
    low = _series(lows)
    up_move = high.diff().iloc[1:]
    down_move = (low.shift(1) - low).iloc[1:]
    dm_plus = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
    dm_minus = down_move.where((down_move > up_move) & (down_move > 0), 0.0)
    tr = _true_range(high, low, _series(closes))

    smoothed_tr = _wilder(tr, period)
    if smoothed_tr <= 0:
        return 0.0
    di_plus = _wilder(dm_plus, period) / smoothed_tr * 100
    di_minus = _wilder(dm_minus, period) / smoothed_tr * 100
    total = di_plus + di_minus
    if total <= 0:
        return 0.0
    return min(100.0, abs(di_plus - di_minus) / total * 100)


def volume_profile(volumes: Sequence[float], period: int = 20) -> VolumeProfile:
    if not volumes:
        return VolumeProfile(sma=0.0, ratio=1.0)
    _check_period("Volume", period)
    window = _series(volumes).iloc[-min(period, len(volumes)) :]
    sma = float(window.mean())
    ratio = float(volumes[-1]) / sma if sma > 0 else 1.0
    return VolumeProfile(sma=sma, ratio=ratio)


@dataclass(slots=True)
class IndicatorEngine:
    settings: IndicatorSettings = field(default_factory=IndicatorSettings)

    def compute(
        self, market_data: MarketData, settings: IndicatorSettings | None = None
    ) -> IndicatorValues:
        cfg = settings or self.settings
        closes = market_data.closes()
        highs = market_data.highs()
        lows = market_data.lows()
        return IndicatorValues(
            rsi=rsi(closes, cfg.rsi.period),
            ema=EmaValues(
                short=ema(closes, cfg.ema.short),
                medium=ema(closes, cfg.ema.medium),
                long=ema(closes, cfg.ema.long),
            ),
            macd=macd(closes, cfg.macd.fast_period, cfg.macd.slow_period, cfg.macd.signal_period),
            bollinger=bollinger_bands(closes, cfg.bollinger.period, cfg.bollinger.std_dev),
            stochastic=stochastic(highs, lows, closes, cfg.stochastic.k_period, cfg.stochastic.d_period),
            atr=atr(highs, lows, closes, cfg.atr.period),
            adx=adx(highs, lows, closes, cfg.adx.period),
            volume=volume_profile(market_data.volumes(), cfg.volume.period),
        )
