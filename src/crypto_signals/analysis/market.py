from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.indicators.engine import IndicatorEngine
from crypto_signals.indicators.models import IndicatorValues, VolatilityLevel
from crypto_signals.strategy.models import Strategy

from .models import MarketAnalysis
from .risk import RiskAssessmentService
from .trend import TrendClassifier, VotingTrendAnalyzer
from .volume import VolumeAnalyzer

logger = logging.getLogger(__name__)


class MarketAnalyzer:
    """Run indicators and every condition analyzer over one candle window."""

    def __init__(
        self,
        indicator_engine: IndicatorEngine | None = None,
        trend_classifier: TrendClassifier | None = None,
        volume_analyzer: VolumeAnalyzer | None = None,
        risk_service: RiskAssessmentService | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._indicators = indicator_engine or IndicatorEngine()
        self._trend = trend_classifier or VotingTrendAnalyzer()
        self._volume = volume_analyzer or VolumeAnalyzer(clock=clock)
        self._risk = risk_service or RiskAssessmentService(clock=clock)

    def analyze(self, market_data: MarketData, strategy: Strategy | None = None) -> MarketAnalysis:
        settings = strategy.indicators if strategy else None
        indicators = self._indicators.compute(market_data, settings)
        trend = self._trend.classify(indicators, market_data)
        volume = self._volume.analyze(market_data, indicators)
        volatility = self.assess_volatility(market_data, indicators)
        risk = self._risk.assess(market_data, indicators, trend, volume, volatility)
        logger.debug(
            "%s %s: trend=%s(%.1f) volume=%s volatility=%s risk=%s",
            market_data.symbol,
            market_data.timeframe,
            trend.direction.value,
            trend.strength,
            volume.value,
            volatility.value,
            risk.level.value,
        )
        return MarketAnalysis(
            market_data=market_data,
            indicators=indicators,
            trend=trend,
            volume=volume,
            volatility=volatility,
            risk=risk,
        )

    @staticmethod
    def assess_volatility(market_data: MarketData, indicators: IndicatorValues) -> VolatilityLevel:
        price = market_data.current_price
        atr_percent = indicators.atr / price * 100 if price > 0 else 0.0
        volatility = market_data.statistics().volatility
        if atr_percent > 5 or volatility > 5:
            return VolatilityLevel.HIGH
        if atr_percent > 2 or volatility > 2:
            return VolatilityLevel.MEDIUM
        return VolatilityLevel.LOW
