from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from crypto_signals.errors import ValidationError


class IndicatorSignal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"


class TrendStrength(str, Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"
    VERY_STRONG = "VERY_STRONG"


class VolatilityLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(slots=True, frozen=True)
class EmaValues:
    short: float
    medium: float
    long: float


@dataclass(slots=True, frozen=True)
class MacdValues:
    line: float
    signal: float
    histogram: float


@dataclass(slots=True, frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(slots=True, frozen=True)
class StochasticValues:
    k: float
    d: float


@dataclass(slots=True, frozen=True)
class VolumeProfile:
    sma: float
    ratio: float


@dataclass(slots=True, frozen=True)
class OverallSignal:
    direction: IndicatorSignal
    strength: int
    confidence: float
    bullish: List[str] = field(default_factory=list)
    bearish: List[str] = field(default_factory=list)
    neutral: List[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class IndicatorValues:
    """One cycle's indicator readings plus the signals derived from them."""

    rsi: float
    ema: EmaValues
    macd: MacdValues
    bollinger: BollingerBands
    stochastic: StochasticValues
    atr: float
    adx: float
    volume: VolumeProfile

    def __post_init__(self) -> None:
        if not 0 <= self.rsi <= 100:
            raise ValidationError("RSI must be between 0 and 100")
        if self.atr < 0:
            raise ValidationError("ATR cannot be negative")
        if not 0 <= self.adx <= 100:
            raise ValidationError("ADX must be between 0 and 100")
        if not (0 <= self.stochastic.k <= 100 and 0 <= self.stochastic.d <= 100):
            raise ValidationError("Stochastic values must be between 0 and 100")
        if min(self.ema.short, self.ema.medium, self.ema.long) <= 0:
            raise ValidationError("EMA values must be positive")
        bands = self.bollinger
        if bands.upper > bands.lower:
            if not bands.lower < bands.middle < bands.upper:
                raise ValidationError("Bollinger Bands must be in order: lower < middle < upper")
        elif not bands.lower == bands.middle == bands.upper:
            raise ValidationError("Bollinger Bands must be in order: lower < middle < upper")

    def rsi_signal(self) -> IndicatorSignal:
        if self.rsi <= 30:
            return IndicatorSignal.BUY
        if self.rsi >= 70:
            return IndicatorSignal.SELL
        return IndicatorSignal.NEUTRAL

    def ema_signal(self) -> IndicatorSignal:
        ema = self.ema
        if ema.short > ema.medium > ema.long:
            return IndicatorSignal.BUY
        if ema.short < ema.medium < ema.long:
            return IndicatorSignal.SELL
        return IndicatorSignal.NEUTRAL

    def macd_signal(self) -> IndicatorSignal:
        macd = self.macd
        if macd.line > macd.signal and macd.histogram > 0:
            return IndicatorSignal.BUY
        if macd.line < macd.signal and macd.histogram < 0:
            return IndicatorSignal.SELL
        return IndicatorSignal.NEUTRAL

    def bollinger_signal(self) -> IndicatorSignal:
        bands = self.bollinger
        if bands.lower > 0 and abs(bands.middle - bands.lower) / bands.lower < 0.02:
            return IndicatorSignal.BUY
        if bands.upper > 0 and abs(bands.middle - bands.upper) / bands.upper < 0.02:
            return IndicatorSignal.SELL
        return IndicatorSignal.NEUTRAL

    def stochastic_signal(self) -> IndicatorSignal:
        k, d = self.stochastic.k, self.stochastic.d
        if k <= 20 and d <= 20:
            return IndicatorSignal.BUY
        if k >= 80 and d >= 80:
            return IndicatorSignal.SELL
        return IndicatorSignal.NEUTRAL

    def signals(self) -> dict[str, IndicatorSignal]:
        return {
            "RSI": self.rsi_signal(),
            "EMA": self.ema_signal(),
            "MACD": self.macd_signal(),
            "Bollinger": self.bollinger_signal(),
            "Stochastic": self.stochastic_signal(),
        }

    @property
    def trend_strength(self) -> TrendStrength:
        if self.adx >= 50:
            return TrendStrength.VERY_STRONG
        if self.adx >= 25:
            return TrendStrength.STRONG
        if self.adx >= 15:
            return TrendStrength.MODERATE
        return TrendStrength.WEAK

    @property
    def volatility_level(self) -> VolatilityLevel:
        if self.bollinger.middle <= 0:
            return VolatilityLevel.LOW
        ratio = self.atr / self.bollinger.middle
        if ratio > 0.03:
            return VolatilityLevel.HIGH
        if ratio > 0.015:
            return VolatilityLevel.MEDIUM
        return VolatilityLevel.LOW

    @property
    def is_volume_above_average(self) -> bool:
        return self.volume.ratio > 1.5

    @property
    def is_high_volume(self) -> bool:
        return self.volume.ratio > 2

    def overall_signal(self) -> OverallSignal:
        bullish: list[str] = []
        bearish: list[str] = []
        neutral: list[str] = []
        for name, signal in self.signals().items():
            if signal is IndicatorSignal.BUY:
                bullish.append(name)
            elif signal is IndicatorSignal.SELL:
                bearish.append(name)
            else:
                neutral.append(name)

        total = len(bullish) + len(bearish) + len(neutral)
        if len(bullish) > len(bearish):
            direction = IndicatorSignal.BUY
        elif len(bearish) > len(bullish):
            direction = IndicatorSignal.SELL
        else:
            direction = IndicatorSignal.NEUTRAL
        dominant = max(len(bullish), len(bearish))

        confidence = dominant / total * 100
        if self.trend_strength in (TrendStrength.STRONG, TrendStrength.VERY_STRONG):
            confidence *= 1.2
        if self.is_volume_above_average:
            confidence *= 1.1

        return OverallSignal(
            direction=direction,
            strength=round(dominant / total * 10),
            confidence=min(100.0, confidence),
            bullish=bullish,
            bearish=bearish,
            neutral=neutral,
        )

    def has_divergence(self) -> bool:
        overall = self.overall_signal()
        return len(overall.bullish) >= 2 and len(overall.bearish) >= 2
