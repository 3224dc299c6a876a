from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from crypto_signals.errors import ValidationError

TIMEFRAME_MINUTES = {
    "1m": 1,
    "5m": 5,
    "15m": 15,
    "30m": 30,
    "1h": 60,
    "4h": 240,
    "1d": 1440,
}


def timeframe_minutes(label: str) -> int:
    if label in TIMEFRAME_MINUTES:
        return TIMEFRAME_MINUTES[label]
    unit = label[-1]
    value = int(label[:-1])
    multiplier = {"m": 1, "h": 60, "d": 1440}[unit]
    return value * multiplier


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class Candle:
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    def __post_init__(self) -> None:
        if self.high < self.low:
            raise ValidationError(f"Candle at {self.timestamp}: high below low")
        if min(self.open, self.high, self.low, self.close) < 0:
            raise ValidationError(f"Candle at {self.timestamp}: negative price")
        if self.volume < 0:
            raise ValidationError(f"Candle at {self.timestamp}: negative volume")
        if not self.low <= self.open <= self.high:
            raise ValidationError(f"Candle at {self.timestamp}: open outside high-low range")
        if not self.low <= self.close <= self.high:
            raise ValidationError(f"Candle at {self.timestamp}: close outside high-low range")


@dataclass(slots=True, frozen=True)
class MarketStatistics:
    average_volume: float
    total_volume: float
    price_change: float
    price_change_percent: float
    highest_price: float
    lowest_price: float
    average_price: float
    # standard deviation of close-to-close returns, in percent
    volatility: float


@dataclass(slots=True, frozen=True)
class PriceAction:
    is_bullish: bool
    is_bearish: bool
    body_size: float
    wick_size: float
    upper_wick: float
    lower_wick: float
    is_doji: bool
    is_hammer: bool
    is_engulfing: bool


@dataclass(slots=True)
class MarketData:
    """Immutable candle window for one symbol/timeframe/exchange.

    ``timestamp`` is the snapshot time (when the candles were fetched); all
    freshness checks are measured against it. Statistics and price action
    are computed on first access and cached.
    """

    symbol: str
    timeframe: str
    exchange: str
    candles: Sequence[Candle]
    timestamp: datetime = field(default_factory=utcnow)
    _statistics: MarketStatistics | None = field(default=None, init=False, repr=False, compare=False)
    _price_action: PriceAction | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.candles = tuple(self.candles)
        if not self.candles:
            raise ValidationError("MarketData must contain at least one candle")
        for index in range(1, len(self.candles)):
            if self.candles[index].timestamp <= self.candles[index - 1].timestamp:
                raise ValidationError(f"Candles must be in chronological order (index {index})")

    @property
    def latest(self) -> Candle:
        return self.candles[-1]

    @property
    def current_price(self) -> float:
        return self.candles[-1].close

    def __len__(self) -> int:
        return len(self.candles)

    def last_candles(self, count: int | None = None) -> Sequence[Candle]:
        if count is None or count >= len(self.candles):
            return self.candles
        if count <= 0:
            raise ValidationError("Count must be positive")
        return self.candles[-count:]

    def closes(self, count: int | None = None) -> list[float]:
        return [c.close for c in self.last_candles(count)]

    def highs(self, count: int | None = None) -> list[float]:
        return [c.high for c in self.last_candles(count)]

    def lows(self, count: int | None = None) -> list[float]:
        return [c.low for c in self.last_candles(count)]

    def volumes(self, count: int | None = None) -> list[float]:
        return [c.volume for c in self.last_candles(count)]

    def statistics(self) -> MarketStatistics:
        if self._statistics is None:
            self._statistics = self._calculate_statistics()
        return self._statistics

    def price_action(self) -> PriceAction:
        if self._price_action is None:
            self._price_action = self._analyze_price_action()
        return self._price_action

    def age_in_minutes(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        return math.floor((now - self.timestamp).total_seconds() / 60)

    def is_recent(self, max_age_minutes: float = 5, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return (now - self.timestamp).total_seconds() / 60 <= max_age_minutes

    def has_sufficient_data(self, min_candles: int = 50) -> bool:
        return len(self.candles) >= min_candles

    def price_change(self, periods: int) -> tuple[float, float]:
        """Absolute and percent change of the close versus ``periods`` candles ago."""
        if periods >= len(self.candles):
            raise ValidationError("Not enough candles for the requested period")
        previous = self.candles[-1 - periods].close
        absolute = self.current_price - previous
        percent = absolute / previous * 100 if previous else 0.0
        return absolute, percent

    def is_making_higher_highs(self, periods: int = 5) -> bool:
        if periods >= len(self.candles):
            return False
        recent = self.last_candles(periods)
        return all(recent[i].high > recent[i - 1].high for i in range(1, len(recent)))

    def is_making_lower_lows(self, periods: int = 5) -> bool:
        if periods >= len(self.candles):
            return False
        recent = self.last_candles(periods)
        return all(recent[i].low < recent[i - 1].low for i in range(1, len(recent)))

    def average_volume(self, periods: int = 20) -> float:
        volumes = self.volumes(periods)
        return sum(volumes) / len(volumes)

    def is_volume_above_average(self, multiplier: float = 1.5, periods: int = 20) -> bool:
        return self.latest.volume >= self.average_volume(periods) * multiplier

    def _calculate_statistics(self) -> MarketStatistics:
        closes = self.closes()
        volumes = self.volumes()
        total_volume = sum(volumes)
        first_price = closes[0]
        price_change = self.current_price - first_price
        price_change_percent = price_change / first_price * 100 if first_price else 0.0

        returns = [
            (closes[i] - closes[i - 1]) / closes[i - 1]
            for i in range(1, len(closes))
            if closes[i - 1]
        ]
        volatility = 0.0
        if returns:
            mean = sum(returns) / len(returns)
            variance = sum((r - mean) ** 2 for r in returns) / len(returns)
            volatility = math.sqrt(variance) * 100

        return MarketStatistics(
            average_volume=total_volume / len(volumes),
            total_volume=total_volume,
            price_change=price_change,
            price_change_percent=price_change_percent,
            highest_price=max(self.highs()),
            lowest_price=min(self.lows()),
            average_price=sum(closes) / len(closes),
            volatility=volatility,
        )

    def _analyze_price_action(self) -> PriceAction:
        candle = self.latest
        is_bullish = candle.close > candle.open
        is_bearish = candle.close < candle.open
        body = abs(candle.close - candle.open)
        upper_wick = candle.high - max(candle.open, candle.close)
        lower_wick = min(candle.open, candle.close) - candle.low
        candle_range = candle.high - candle.low

        is_doji = candle_range > 0 and body < candle_range * 0.1
        is_hammer = (
            candle_range > 0
            and body < candle_range * 0.3
            and lower_wick > body * 2
            and upper_wick < body * 0.5
        )

        is_engulfing = False
        if len(self.candles) >= 2:
            previous = self.candles[-2]
            prev_bullish = previous.close > previous.open
            if is_bullish and not prev_bullish:
                is_engulfing = candle.open < previous.close and candle.close > previous.open
            elif is_bearish and prev_bullish:
                is_engulfing = candle.open > previous.close and candle.close < previous.open

        return PriceAction(
            is_bullish=is_bullish,
            is_bearish=is_bearish,
            body_size=body,
            wick_size=upper_wick + lower_wick,
            upper_wick=upper_wick,
            lower_wick=lower_wick,
            is_doji=is_doji,
            is_hammer=is_hammer,
            is_engulfing=is_engulfing,
        )
