"""Trend classifiers.

Two interchangeable models are provided. ``VotingTrendAnalyzer`` tallies
weighted votes and is the default; ``RuleCascadeTrendAnalyzer`` walks a
fixed list of threshold rules and stops at the first one that matches.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from crypto_signals.data.models import MarketData
from crypto_signals.errors import ValidationError
from crypto_signals.indicators.models import IndicatorSignal, IndicatorValues

from .models import TrendDirection, TrendSignal

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _momentum_bonus(abs_change: float) -> float:
    if abs_change > 5:
        return 4
    if abs_change > 3:
        return 2.5
    if abs_change > 1.5:
        return 1.5
    if abs_change > 0.5:
        return 0.5
    return 0


class TrendClassifier(ABC):
    name: str = "base"

    @abstractmethod
    def classify(self, indicators: IndicatorValues, market_data: MarketData) -> TrendSignal:
        raise NotImplementedError


@dataclass(slots=True)
class _Votes:
    bullish: float = 0.0
    bearish: float = 0.0
    details: List[str] = field(default_factory=list)


class VotingTrendAnalyzer(TrendClassifier):
    name = "voting"

    def classify(self, indicators: IndicatorValues, market_data: MarketData) -> TrendSignal:
        try:
            votes = self._collect_votes(indicators, market_data)
            direction = self._direction(votes)
            strength = self._strength(votes, market_data)
            confidence = self._confidence(votes, direction, strength)
            return TrendSignal(
                direction=direction,
                strength=strength,
                confidence=confidence,
                reasons=self._reasons(votes, direction, strength),
            )
        except Exception:
            logger.exception("Trend analysis failed for %s", market_data.symbol)
            return TrendSignal(
                direction=TrendDirection.NEUTRAL,
                strength=1,
                confidence=1,
                reasons=["Error in trend analysis"],
            )

    def _collect_votes(self, indicators: IndicatorValues, market_data: MarketData) -> _Votes:
        votes = _Votes()
        price = market_data.current_price
        medium = indicators.ema.medium
        if price > medium:
            votes.bullish += 2
            votes.details.append(f"Price above EMA medium ({medium:.6f})")
        else:
            votes.bearish += 2
            votes.details.append(f"Price below EMA medium ({medium:.6f})")

        macd = indicators.macd_signal()
        if macd is IndicatorSignal.BUY:
            votes.bullish += 1.5
            votes.details.append("MACD bullish")
        elif macd is IndicatorSignal.SELL:
            votes.bearish += 1.5
            votes.details.append("MACD bearish")
        else:
            votes.details.append("MACD neutral")

        change = market_data.statistics().price_change_percent
        if change > 2:
            votes.bullish += 1.5
            votes.details.append(f"Strong bullish momentum: +{change:.1f}%")
        elif change < -2:
            votes.bearish += 1.5
            votes.details.append(f"Strong bearish momentum: {change:.1f}%")
        elif abs(change) > 1:
            points = 0.75 if abs(change) > 1.5 else 0.5
            if change > 0:
                votes.bullish += points
                votes.details.append(f"Moderate bullish momentum: +{change:.1f}%")
            else:
                votes.bearish += points
                votes.details.append(f"Moderate bearish momentum: {change:.1f}%")
        else:
            votes.details.append(f"Weak momentum: {change:.1f}%")
        return votes

    @staticmethod
    def _direction(votes: _Votes) -> TrendDirection:
        margin = abs(votes.bullish - votes.bearish)
        if votes.bullish > votes.bearish and margin >= 1:
            return TrendDirection.BULLISH
        if votes.bearish > votes.bullish and margin >= 1:
            return TrendDirection.BEARISH
        return TrendDirection.NEUTRAL

    @staticmethod
    def _strength(votes: _Votes, market_data: MarketData) -> float:
        total = votes.bullish + votes.bearish
        if total == 0:
            return 1
        ratio_points = max(votes.bullish, votes.bearish) / total * 6
        bonus = _momentum_bonus(abs(market_data.statistics().price_change_percent))
        return _clamp(round(ratio_points + bonus, 1), 1, 10)

    @staticmethod
    def _confidence(votes: _Votes, direction: TrendDirection, strength: float) -> float:
        if direction is TrendDirection.NEUTRAL:
            return _clamp(strength * 0.4, 1, 4)
        total = votes.bullish + votes.bearish
        if total == 0:
            return 1
        winning = votes.bullish if direction is TrendDirection.BULLISH else votes.bearish
        agreement = winning / total
        return _clamp(round(agreement * 7 + strength / 10 * 3, 1), 1, 10)

    @staticmethod
    def _reasons(votes: _Votes, direction: TrendDirection, strength: float) -> List[str]:
        if strength >= 8:
            label = "Very strong"
        elif strength >= 6:
            label = "Strong"
        elif strength >= 4:
            label = "Moderate"
        else:
            label = "Weak"
        if direction is TrendDirection.BULLISH:
            header = f"{label} bullish trend ({votes.bullish:.1f} vs {votes.bearish:.1f} points)"
        elif direction is TrendDirection.BEARISH:
            header = f"{label} bearish trend ({votes.bearish:.1f} vs {votes.bullish:.1f} points)"
        else:
            header = f"Neutral market, no clear trend ({votes.bullish:.1f} vs {votes.bearish:.1f})"
        return [header, *votes.details[:3]]


class RuleCascadeTrendAnalyzer(TrendClassifier):
    """First matching rule wins; anything unmatched is SIDEWAYS."""

    name = "cascade"

    def classify(self, indicators: IndicatorValues, market_data: MarketData) -> TrendSignal:
        direction, rule = self._direction(indicators, market_data)
        strength = self._strength(indicators, market_data, direction)
        confidence = self._confidence(indicators, market_data, direction, strength)
        return TrendSignal(
            direction=direction,
            strength=strength,
            confidence=confidence,
            reasons=[f"{direction.value.capitalize()} trend: {rule}"],
        )

    @staticmethod
    def _direction(indicators: IndicatorValues, market_data: MarketData) -> tuple[TrendDirection, str]:
        overall = indicators.overall_signal()
        change_total = market_data.statistics().price_change_percent
        change_recent = market_data.price_change(5)[1] if len(market_data) > 5 else 0.0
        price = market_data.current_price
        ema = indicators.ema
        above_short = price > ema.short
        above_medium = price > ema.medium
        above_long = price > ema.long
        macd = indicators.macd_signal()
        rsi = indicators.rsi_signal()
        high_volume = indicators.is_volume_above_average

        if change_total < -3:
            return TrendDirection.BEARISH, f"price down {change_total:.1f}% over the window"
        if change_recent < -2 and not above_short and high_volume:
            return TrendDirection.BEARISH, "recent sell-off below EMA short on heavy volume"
        if macd is IndicatorSignal.SELL and rsi is IndicatorSignal.SELL and not above_medium:
            return TrendDirection.BEARISH, "MACD and RSI agree on SELL below EMA medium"

        if change_total > 3:
            return TrendDirection.BULLISH, f"price up {change_total:.1f}% over the window"
        if change_recent > 2 and above_short and high_volume:
            return TrendDirection.BULLISH, "recent rally above EMA short on heavy volume"
        if macd is IndicatorSignal.BUY and rsi is IndicatorSignal.BUY and above_medium:
            return TrendDirection.BULLISH, "MACD and RSI agree on BUY above EMA medium"

        if abs(change_total) < 2 and abs(change_recent) < 1.5 and overall.strength < 7:
            return TrendDirection.SIDEWAYS, "price range-bound"

        if overall.direction is IndicatorSignal.BUY and overall.strength >= 5:
            if above_short:
                return TrendDirection.BULLISH, "indicator majority BUY above EMA short"
            return TrendDirection.SIDEWAYS, "indicator majority BUY without price confirmation"
        if overall.direction is IndicatorSignal.SELL and overall.strength >= 5:
            if not above_short:
                return TrendDirection.BEARISH, "indicator majority SELL below EMA short"
            return TrendDirection.SIDEWAYS, "indicator majority SELL without price confirmation"

        if high_volume and abs(change_total) < 1:
            if above_medium and above_long:
                return TrendDirection.BULLISH, "heavy volume above EMA medium and long"
            if not above_medium and not above_long:
                return TrendDirection.BEARISH, "heavy volume below EMA medium and long"
        return TrendDirection.SIDEWAYS, "no rule matched"

    @staticmethod
    def _strength(indicators: IndicatorValues, market_data: MarketData, direction: TrendDirection) -> float:
        strength = float(indicators.overall_signal().strength)
        change = abs(market_data.statistics().price_change_percent)
        if direction is not TrendDirection.SIDEWAYS:
            if change > 5:
                strength += 2
            elif change > 3:
                strength += 1.5
            elif change > 1.5:
                strength += 1
        if indicators.is_volume_above_average:
            strength += 1
        if indicators.is_high_volume:
            strength += 0.5
        if indicators.adx > 25:
            strength += 1
        if indicators.adx > 40:
            strength += 0.5
        if direction is TrendDirection.SIDEWAYS and indicators.has_divergence():
            strength -= 1
        if direction is TrendDirection.BULLISH and market_data.is_making_higher_highs(3):
            strength += 1
        if direction is TrendDirection.BEARISH and market_data.is_making_lower_lows(3):
            strength += 1
        return _clamp(round(strength, 1), 1, 10)

    @staticmethod
    def _confidence(
        indicators: IndicatorValues, market_data: MarketData, direction: TrendDirection, strength: float
    ) -> float:
        confidence = strength * 10
        change = abs(market_data.statistics().price_change_percent)
        if direction is not TrendDirection.SIDEWAYS:
            confidence += 15
            if change > 3:
                confidence += 10
            if change > 5:
                confidence += 5
        overall = indicators.overall_signal()
        confidence += (len(overall.bullish) + len(overall.bearish)) * 3
        if indicators.has_divergence():
            confidence -= 15
        return _clamp(round(confidence / 10, 1), 1, 10)


def build_trend_classifier(model: str) -> TrendClassifier:
    if model == "voting":
        return VotingTrendAnalyzer()
    if model == "cascade":
        return RuleCascadeTrendAnalyzer()
    raise ValidationError(f"Unknown trend model: {model}")
