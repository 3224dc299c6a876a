from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from crypto_signals.data.models import MarketData
from crypto_signals.indicators.models import IndicatorValues, VolatilityLevel


class TrendDirection(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"
    SIDEWAYS = "SIDEWAYS"


class VolumeLevel(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


@dataclass(slots=True, frozen=True)
class TrendSignal:
    direction: TrendDirection
    strength: float  # 1-10
    confidence: float  # 1-10
    reasons: List[str] = field(default_factory=list)

    @property
    def is_directional(self) -> bool:
        return self.direction in (TrendDirection.BULLISH, TrendDirection.BEARISH)

    @property
    def is_bullish(self) -> bool:
        return self.direction is TrendDirection.BULLISH and self.strength >= 4

    @property
    def is_bearish(self) -> bool:
        return self.direction is TrendDirection.BEARISH and self.strength >= 4

    @property
    def is_high_quality(self) -> bool:
        return self.is_directional and self.strength >= 6 and self.confidence >= 6


@dataclass(slots=True, frozen=True)
class RiskAssessment:
    level: RiskLevel
    score: float
    factors: List[str] = field(default_factory=list)
    recommendation: str = ""


@dataclass(slots=True, frozen=True)
class MarketAnalysis:
    """Everything the analyzers concluded about one candle window."""

    market_data: MarketData
    indicators: IndicatorValues
    trend: TrendSignal
    volume: VolumeLevel
    volatility: VolatilityLevel
    risk: RiskAssessment
