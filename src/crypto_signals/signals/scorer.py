"""Composite 0-10 signal score.

The score is the sum of four capped components (trend 0-4, momentum 0-3,
volume 0-2, entry timing 0-1) plus non-positive penalties. ``score`` never
raises: any failure degrades to a HOLD with HIGH risk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List

from crypto_signals.analysis.models import TrendDirection, TrendSignal, VolumeLevel
from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.indicators.models import IndicatorValues

logger = logging.getLogger(__name__)


class ScoreDirection(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class ScoreStrength(str, Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"


class Action(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class PositionSize(str, Enum):
    SMALL = "SMALL"
    NORMAL = "NORMAL"
    LARGE = "LARGE"


class ScoreRisk(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass(slots=True, frozen=True)
class ScoreBreakdown:
    trend: float
    momentum: float
    volume: float
    entry: float
    penalties: float
    details: List[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Recommendation:
    action: Action
    position_size: PositionSize
    risk_level: ScoreRisk
    reasons: List[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SignalScore:
    total: float  # 0-10
    direction: ScoreDirection
    strength: ScoreStrength
    confidence: float  # 0-100
    breakdown: ScoreBreakdown
    recommendation: Recommendation

    @property
    def is_high_quality(self) -> bool:
        return self.total >= 7 and self.confidence >= 70 and self.direction is not ScoreDirection.HOLD

    @property
    def should_trade(self) -> bool:
        return (
            self.total >= 5
            and self.confidence >= 50
            and self.direction is not ScoreDirection.HOLD
            and self.recommendation.risk_level is not ScoreRisk.HIGH
        )


def _round1(value: float) -> float:
    return round(value, 1)


class SignalScorer:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def score(
        self,
        trend: TrendSignal,
        indicators: IndicatorValues,
        market_data: MarketData,
        volume: VolumeLevel,
    ) -> SignalScore:
        try:
            breakdown = self._breakdown(trend, indicators, market_data, volume)
            total = max(
                0.0,
                min(10.0, _round1(breakdown.trend + breakdown.momentum + breakdown.volume + breakdown.entry + breakdown.penalties)),
            )
            direction = self._direction(trend, total)
            confidence = self._confidence(breakdown, trend, total)
            return SignalScore(
                total=total,
                direction=direction,
                strength=self._strength(total),
                confidence=confidence,
                breakdown=breakdown,
                recommendation=self._recommend(total, direction, confidence, volume, breakdown),
            )
        except Exception as exc:
            logger.exception("Scoring failed for %s", market_data.symbol)
            return self._safe_hold(exc)

    def _breakdown(
        self,
        trend: TrendSignal,
        indicators: IndicatorValues,
        market_data: MarketData,
        volume: VolumeLevel,
    ) -> ScoreBreakdown:
        details: List[str] = []
        return ScoreBreakdown(
            trend=self._trend_score(trend, details),
            momentum=self._momentum_score(indicators, market_data, details),
            volume=self._volume_score(volume, market_data, details),
            entry=self._entry_score(indicators, trend, details),
            penalties=self._penalties(indicators, market_data, details),
            details=details,
        )

    @staticmethod
    def _trend_score(trend: TrendSignal, details: List[str]) -> float:
        if not trend.is_directional:
            details.append("Trend: neutral (+1.0)")
            return 1.0
        strength_points = trend.strength / 10 * 3
        if trend.confidence >= 8:
            bonus = 1.0
        elif trend.confidence >= 6:
            bonus = 0.5
        elif trend.confidence >= 4:
            bonus = 0.2
        else:
            bonus = 0.0
        score = strength_points + bonus
        details.append(
            f"Trend: {trend.direction.value.lower()} strength({strength_points:.1f})"
            f" + confidence({bonus:.1f}) = +{score:.1f}"
        )
        return min(4.0, _round1(score))

    @staticmethod
    def _momentum_score(indicators: IndicatorValues, market_data: MarketData, details: List[str]) -> float:
        rsi = indicators.rsi
        if rsi < 30:
            rsi_points, rsi_text = 1.5, f"RSI oversold ({rsi:.1f})"
        elif rsi > 70:
            rsi_points, rsi_text = 1.5, f"RSI overbought ({rsi:.1f})"
        elif 45 <= rsi <= 55:
            rsi_points, rsi_text = 1.0, f"RSI neutral ({rsi:.1f})"
        else:
            rsi_points, rsi_text = 0.7, f"RSI moderate ({rsi:.1f})"

        change = market_data.statistics().price_change_percent
        magnitude = abs(change)
        if magnitude > 5:
            move_points, move_text = 1.5, "very strong"
        elif magnitude > 3:
            move_points, move_text = 1.2, "strong"
        elif magnitude > 1.5:
            move_points, move_text = 0.8, "moderate"
        elif magnitude > 0.5:
            move_points, move_text = 0.4, "weak"
        else:
            move_points, move_text = 0.1, "minimal"

        score = rsi_points + move_points
        details.append(f"Momentum: {rsi_text} + {move_text} move ({change:.1f}%) = +{score:.1f}")
        return min(3.0, _round1(score))

    @staticmethod
    def _volume_score(volume: VolumeLevel, market_data: MarketData, details: List[str]) -> float:
        magnitude = abs(market_data.statistics().price_change_percent)
        if volume is VolumeLevel.HIGH:
            score = 2.0 if magnitude > 2 else 1.5
        elif volume is VolumeLevel.NORMAL:
            score = 1.2 if magnitude > 3 else 1.0
        else:
            score = 0.5 if magnitude < 1 else 0.2
        details.append(f"Volume: {volume.value.lower()} with {magnitude:.1f}% move = +{score:.1f}")
        return score

    @staticmethod
    def _entry_score(indicators: IndicatorValues, trend: TrendSignal, details: List[str]) -> float:
        rsi = indicators.rsi
        if trend.direction is TrendDirection.BULLISH:
            if rsi < 40:
                score = 1.0
            elif rsi < 50:
                score = 0.7
            elif rsi < 60:
                score = 0.4
            else:
                score = 0.1
        elif trend.direction is TrendDirection.BEARISH:
            if rsi > 60:
                score = 1.0
            elif rsi > 50:
                score = 0.7
            elif rsi > 40:
                score = 0.4
            else:
                score = 0.1
        else:
            score = 0.5 if rsi < 35 or rsi > 65 else 0.1
        details.append(f"Timing: RSI {rsi:.1f} for {trend.direction.value.lower()} trend = +{score:.1f}")
        return score

    def _penalties(self, indicators: IndicatorValues, market_data: MarketData, details: List[str]) -> float:
        penalties = 0.0
        notes: List[str] = []
        if indicators.has_divergence():
            penalties -= 1
            notes.append("indicator divergence (-1.0)")
        age = market_data.age_in_minutes(self._clock())
        if age > 15:
            penalties -= 1
            notes.append(f"stale data {age}m (-1.0)")
        elif age > 10:
            penalties -= 0.5
            notes.append(f"aging data {age}m (-0.5)")
        rsi = indicators.rsi
        if rsi > 85 or rsi < 15:
            penalties -= 0.5
            notes.append(f"extreme RSI {rsi:.1f} (-0.5)")
        statistics = market_data.statistics()
        # volatility is a percentage
        if abs(statistics.price_change_percent) < 0.3 and statistics.volatility < 1:
            penalties -= 0.3
            notes.append("very low activity (-0.3)")
        if notes:
            details.append("Penalties: " + ", ".join(notes))
        return _round1(penalties)

    @staticmethod
    def _direction(trend: TrendSignal, total: float) -> ScoreDirection:
        if total < 4:
            return ScoreDirection.HOLD
        if trend.direction is TrendDirection.BULLISH:
            return ScoreDirection.BUY
        if trend.direction is TrendDirection.BEARISH:
            return ScoreDirection.SELL
        return ScoreDirection.HOLD

    @staticmethod
    def _strength(total: float) -> ScoreStrength:
        if total >= 8:
            return ScoreStrength.STRONG
        if total >= 6:
            return ScoreStrength.MODERATE
        return ScoreStrength.WEAK

    @staticmethod
    def _confidence(breakdown: ScoreBreakdown, trend: TrendSignal, total: float) -> float:
        if breakdown.penalties >= -0.5:
            clean_bonus = 20
        elif breakdown.penalties >= -1.0:
            clean_bonus = 10
        else:
            clean_bonus = 0
        confidence = total / 10 * 50 + trend.confidence / 10 * 30 + clean_bonus
        return float(max(0, min(100, round(confidence))))

    @staticmethod
    def _recommend(
        total: float,
        direction: ScoreDirection,
        confidence: float,
        volume: VolumeLevel,
        breakdown: ScoreBreakdown,
    ) -> Recommendation:
        reasons: List[str] = []
        strong = Action.STRONG_BUY if direction is ScoreDirection.BUY else Action.STRONG_SELL
        plain = Action.BUY if direction is ScoreDirection.BUY else Action.SELL
        summary = f"score {total}/10, confidence {confidence:.0f}%"
        if direction is ScoreDirection.HOLD:
            action = Action.HOLD
            reasons.append(f"No directional edge: {summary}")
        elif total >= 8.5 and confidence >= 80:
            action = strong
            reasons.append(f"Excellent signal: {summary}")
        elif total >= 7 and confidence >= 65:
            action = strong
            reasons.append(f"Strong signal: {summary}")
        elif total >= 5.5 and confidence >= 50:
            action = plain
            reasons.append(f"Good signal: {summary}")
        elif total >= 4 and confidence >= 40:
            action = plain
            reasons.append(f"Moderate signal: {summary}")
        else:
            action = Action.HOLD
            reasons.append(f"Weak signal: {summary}")

        if confidence >= 85 and volume is VolumeLevel.HIGH and breakdown.penalties > -0.5:
            size, risk = PositionSize.LARGE, ScoreRisk.LOW
            reasons.append("High confidence with good liquidity, larger position")
        elif confidence >= 70 and volume is not VolumeLevel.LOW:
            size = PositionSize.NORMAL
            risk = ScoreRisk.LOW if confidence >= 80 else ScoreRisk.MEDIUM
        else:
            size = PositionSize.SMALL
            risk = ScoreRisk.HIGH if confidence < 50 else ScoreRisk.MEDIUM
            reasons.append("Reduced confidence or thin volume, small position")

        if volume is VolumeLevel.LOW and action is not Action.HOLD:
            size, risk = PositionSize.SMALL, ScoreRisk.HIGH
            reasons.append("Low volume, slippage risk")
        if breakdown.penalties <= -1.5:
            size, risk = PositionSize.SMALL, ScoreRisk.HIGH
            reasons.append("Several negative factors, trade carefully")
        return Recommendation(action=action, position_size=size, risk_level=risk, reasons=reasons[:3])

    @staticmethod
    def _safe_hold(exc: Exception) -> SignalScore:
        return SignalScore(
            total=0.0,
            direction=ScoreDirection.HOLD,
            strength=ScoreStrength.WEAK,
            confidence=0.0,
            breakdown=ScoreBreakdown(
                trend=0.0,
                momentum=0.0,
                volume=0.0,
                entry=0.0,
                penalties=-5.0,
                details=[f"Analysis error: {exc}"],
            ),
            recommendation=Recommendation(
                action=Action.HOLD,
                position_size=PositionSize.SMALL,
                risk_level=ScoreRisk.HIGH,
                reasons=["Analysis error, staying out of the market"],
            ),
        )
