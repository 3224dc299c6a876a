from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List

from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.indicators.models import IndicatorValues, VolatilityLevel

from .models import RiskAssessment, RiskLevel, TrendDirection, TrendSignal, VolumeLevel

logger = logging.getLogger(__name__)

_RECOMMENDATIONS = {
    RiskLevel.LOW: "Low risk environment suitable for normal position sizing",
    RiskLevel.MEDIUM: "Moderate risk present, consider reducing position size by 25%",
    RiskLevel.HIGH: "High risk environment, reduce position size by 50% and use tight stops",
    RiskLevel.VERY_HIGH: "Very high risk, consider avoiding trades or use minimal position sizes",
}


class RiskAssessmentService:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def assess(
        self,
        market_data: MarketData,
        indicators: IndicatorValues,
        trend: TrendSignal,
        volume: VolumeLevel,
        volatility: VolatilityLevel,
    ) -> RiskAssessment:
        factors: List[str] = []
        score = 0.0

        if volatility is VolatilityLevel.HIGH:
            factors.append("High market volatility increases risk")
            score += 3
        elif volatility is VolatilityLevel.MEDIUM:
            factors.append("Moderate volatility present")
            score += 1

        if volume is VolumeLevel.LOW:
            factors.append("Low volume suggests weak market participation")
            score += 2
        elif volume is VolumeLevel.HIGH:
            factors.append("High volume provides good liquidity")
            score -= 1

        if trend.direction in (TrendDirection.SIDEWAYS, TrendDirection.NEUTRAL):
            factors.append("Sideways market increases uncertainty")
            score += 2
        elif trend.strength < 4:
            factors.append("Weak trend strength reduces reliability")
            score += 2

        statistics = market_data.statistics()
        if statistics.average_price > 0:
            price_range = (statistics.highest_price - statistics.lowest_price) / statistics.average_price
            if price_range > 0.2:
                factors.append("Wide price range indicates high volatility period")
                score += 1
        if not market_data.is_recent(5, now=self._clock()):
            factors.append("Market data is not recent")
            score += 1

        if indicators.has_divergence():
            factors.append("Technical indicator divergence detected")
            score += 2

        level = self._level(score)
        logger.debug("Risk for %s: %s (score %.1f, %d factors)", market_data.symbol, level.value, score, len(factors))
        return RiskAssessment(level=level, score=score, factors=factors, recommendation=_RECOMMENDATIONS[level])

    @staticmethod
    def _level(score: float) -> RiskLevel:
        if score >= 8:
            return RiskLevel.VERY_HIGH
        if score >= 5:
            return RiskLevel.HIGH
        if score >= 2:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW
