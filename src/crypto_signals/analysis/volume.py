from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Sequence

from crypto_signals.data.models import Candle, MarketData, utcnow
from crypto_signals.indicators.models import IndicatorValues

from .models import VolumeLevel

TREND_WINDOW = 20


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class VolumeAnalyzer:
    """Classify participation as LOW / NORMAL / HIGH.

    The score starts from a bucket of the latest volume ratio and is then
    nudged by price/volume coherence, the UTC trading session, the recent
    volume trend and volatility. ``clock`` supplies the session hour.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def analyze(self, market_data: MarketData, indicators: IndicatorValues) -> VolumeLevel:
        ratio = indicators.volume.ratio
        statistics = market_data.statistics()
        score = self._base_score(ratio)
        score += self._price_volume_adjustment(statistics.price_change_percent, ratio)
        score += self._session_adjustment(self._clock())
        score += self._trend_adjustment(market_data, ratio)
        score += self._volatility_adjustment(statistics.volatility, ratio)
        return self._category(_clamp(score, 1, 10))

    @staticmethod
    def _base_score(ratio: float) -> float:
        for threshold, points in ((3.0, 10), (2.5, 9), (2.0, 8), (1.5, 6), (1.3, 5), (1.0, 4), (0.7, 3), (0.5, 2)):
            if ratio > threshold:
                return points
        return 1

    @staticmethod
    def _price_volume_adjustment(price_change_percent: float, ratio: float) -> float:
        change = abs(price_change_percent)
        if change > 5 and ratio > 2.0:
            return 2
        if change > 3 and ratio < 0.8:
            return -2
        if change < 1 and ratio > 2.0:
            return 1
        return 0

    @staticmethod
    def _session_adjustment(now: datetime) -> float:
        hour = now.hour
        if hour < 8:
            return 0
        if hour < 16:
            return 0.5
        if hour < 22:
            return 1
        return -0.5

    @staticmethod
    def _volatility_adjustment(volatility: float, ratio: float) -> float:
        # volatility is a percentage
        if volatility > 5:
            return 1 if ratio > 1.5 else -1
        if volatility < 2 and ratio > 2.0:
            return 1
        return 0

    @staticmethod
    def _category(score: float) -> VolumeLevel:
        if score >= 8:
            return VolumeLevel.HIGH
        if score >= 4:
            return VolumeLevel.NORMAL
        return VolumeLevel.LOW

    def _trend_adjustment(self, market_data: MarketData, ratio: float) -> float:
        if not market_data.has_sufficient_data(TREND_WINDOW):
            return self._simple_signal(ratio)
        candles = market_data.last_candles(TREND_WINDOW)
        volumes = [c.volume for c in candles]
        current = market_data.latest.volume
        average = market_data.average_volume(TREND_WINDOW)
        score = (
            self._volume_trend_score(volumes) * 0.3
            + self._current_volume_score(current, average) * 0.25
            + self._price_volume_correlation(candles, volumes) * 0.25
            + self._breakout_score(current, volumes, average) * 0.2
        )
        return _clamp(score, -1, 1)

    @staticmethod
    def _simple_signal(ratio: float) -> float:
        for threshold, points in ((3.0, 0.8), (2.0, 0.5), (1.5, 0.3), (1.2, 0.1), (0.8, 0.0), (0.6, -0.2)):
            if ratio >= threshold:
                return points
        return -0.4

    @staticmethod
    def _volume_trend_score(volumes: Sequence[float]) -> float:
        if len(volumes) < 3:
            return 0
        changes = [
            (volumes[i] - volumes[i - 1]) / volumes[i - 1] if volumes[i - 1] else 0.0
            for i in range(1, len(volumes))
        ]
        increasing = sum(1 for change in changes if change > 0.05)
        decreasing = sum(1 for change in changes if change < -0.05)
        direction = (increasing - decreasing) / len(changes)
        strength = min(1.0, sum(abs(change) for change in changes) / len(changes) * 2)
        return direction * strength

    @staticmethod
    def _current_volume_score(current: float, average: float) -> float:
        if average <= 0:
            return 0
        ratio = current / average
        for threshold, points in ((3.0, 1.0), (2.0, 0.8), (1.5, 0.5), (1.2, 0.2), (0.8, 0.0), (0.5, -0.3)):
            if ratio >= threshold:
                return points
        return -0.6

    @staticmethod
    def _price_volume_correlation(candles: Sequence[Candle], volumes: Sequence[float]) -> float:
        if len(candles) < 2:
            return 0
        confirming = 0
        fading = 0
        significant = 0
        for i in range(1, len(candles)):
            previous_close = candles[i - 1].close
            previous_volume = volumes[i - 1]
            if not previous_close or not previous_volume:
                continue
            price_change = (candles[i].close - previous_close) / previous_close
            volume_change = (volumes[i] - previous_volume) / previous_volume
            if abs(price_change) > 0.01:
                significant += 1
                if volume_change > 0:
                    confirming += 1
                elif volume_change < -0.1:
                    fading += 1
        if significant == 0:
            return 0
        return confirming / significant * 0.8 - fading / significant * 0.5

    @staticmethod
    def _breakout_score(current: float, volumes: Sequence[float], average: float) -> float:
        variance = sum((v - average) ** 2 for v in volumes) / len(volumes)
        std = math.sqrt(variance)
        if std == 0:
            return 0
        z_score = (current - average) / std
        if z_score >= 3.0:
            score = 1.0
        elif z_score >= 2.0:
            score = 0.7
        elif z_score >= 1.5:
            score = 0.4
        elif z_score <= -2.0:
            score = -0.6
        else:
            score = 0.0
        # new high versus the earlier candles of the window
        if len(volumes) > 1 and current > max(volumes[:-1]) and z_score > 1.0:
            score += 0.3
        return _clamp(score, -1, 1)
