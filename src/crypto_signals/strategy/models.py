from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Tuple

from crypto_signals.data.models import timeframe_minutes
from crypto_signals.errors import ValidationError


class StrategyType(str, Enum):
    SCALPING = "SCALPING"
    INTRADAY = "INTRADAY"
    SWING = "SWING"
    POSITION = "POSITION"


_TYPE_BY_TIMEFRAME = {
    "1m": StrategyType.SCALPING,
    "5m": StrategyType.SCALPING,
    "15m": StrategyType.INTRADAY,
    "30m": StrategyType.INTRADAY,
    "1h": StrategyType.SWING,
    "4h": StrategyType.POSITION,
    "1d": StrategyType.POSITION,
}

_BASE_SIGNAL_RATE = {
    StrategyType.SCALPING: 0.05,
    StrategyType.INTRADAY: 0.03,
    StrategyType.SWING: 0.015,
    StrategyType.POSITION: 0.005,
}


@dataclass(slots=True, frozen=True)
class EmaSettings:
    short: int = 9
    medium: int = 21
    long: int = 50


@dataclass(slots=True, frozen=True)
class RsiSettings:
    period: int = 14
    oversold: float = 30
    overbought: float = 70


@dataclass(slots=True, frozen=True)
class MacdSettings:
    fast_period: int = 12
    slow_period: int = 26
    signal_period: int = 9


@dataclass(slots=True, frozen=True)
class BollingerSettings:
    period: int = 20
    std_dev: float = 2.0


@dataclass(slots=True, frozen=True)
class StochasticSettings:
    k_period: int = 14
    d_period: int = 3


@dataclass(slots=True, frozen=True)
class AtrSettings:
    period: int = 14


@dataclass(slots=True, frozen=True)
class AdxSettings:
    period: int = 14


@dataclass(slots=True, frozen=True)
class VolumeSettings:
    threshold: float = 1.5
    period: int = 20


@dataclass(slots=True, frozen=True)
class IndicatorSettings:
    ema: EmaSettings = field(default_factory=EmaSettings)
    rsi: RsiSettings = field(default_factory=RsiSettings)
    macd: MacdSettings = field(default_factory=MacdSettings)
    bollinger: BollingerSettings = field(default_factory=BollingerSettings)
    stochastic: StochasticSettings = field(default_factory=StochasticSettings)
    atr: AtrSettings = field(default_factory=AtrSettings)
    adx: AdxSettings = field(default_factory=AdxSettings)
    volume: VolumeSettings = field(default_factory=VolumeSettings)

    @property
    def min_candles(self) -> int:
        """Shortest window on which every configured indicator is defined."""
        return max(
            self.ema.long,
            self.rsi.period + 1,
            self.macd.slow_period + self.macd.signal_period - 1,
            self.bollinger.period,
            self.stochastic.k_period,
            self.atr.period + 1,
            self.adx.period * 2,
        )


@dataclass(slots=True, frozen=True)
class RiskManagement:
    stop_loss: float = 0.02
    take_profits: Tuple[float, ...] = (0.03, 0.05)
    max_risk_per_trade: float = 2.0
    risk_reward_ratio: float = 1.5


@dataclass(slots=True, frozen=True)
class Strategy:
    name: str
    timeframe: str
    indicators: IndicatorSettings = field(default_factory=IndicatorSettings)
    risk: RiskManagement = field(default_factory=RiskManagement)
    min_signal_strength: float = 5
    max_simultaneous_signals: int = 5
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "risk", replace(self.risk, take_profits=tuple(self.risk.take_profits)))
        self._validate_parameters()
        self._validate_indicators()
        self._validate_risk()

    @property
    def type(self) -> StrategyType:
        return _TYPE_BY_TIMEFRAME.get(self.timeframe, StrategyType.INTRADAY)

    @property
    def min_candles(self) -> int:
        return self.indicators.min_candles

    def clone(self, **changes) -> "Strategy":
        changes.setdefault("name", f"{self.name} (Copy)")
        return replace(self, **changes)

    def optimize(self, market_volatility: float) -> "Strategy":
        """Return a copy tuned for the given volatility (fraction, e.g. 0.05 = 5%)."""
        rsi = self.indicators.rsi
        risk = self.risk
        if market_volatility > 0.05:
            rsi = replace(
                rsi,
                oversold=max(20, rsi.oversold - 5),
                overbought=min(80, rsi.overbought + 5),
            )
            risk = replace(
                risk,
                stop_loss=risk.stop_loss * 1.2,
                take_profits=tuple(tp * 1.15 for tp in risk.take_profits),
            )
        elif market_volatility < 0.02:
            rsi = replace(
                rsi,
                oversold=min(35, rsi.oversold + 5),
                overbought=max(65, rsi.overbought - 5),
            )
            risk = replace(
                risk,
                stop_loss=risk.stop_loss * 0.8,
                take_profits=tuple(tp * 0.85 for tp in risk.take_profits),
            )
        return self.clone(
            name=f"{self.name} (Optimized)"[:50],
            indicators=replace(self.indicators, rsi=rsi),
            risk=risk,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Strategy":
        ind = payload.get("indicators", {})
        indicators = IndicatorSettings(
            ema=EmaSettings(**ind.get("ema", {})),
            rsi=RsiSettings(**ind.get("rsi", {})),
            macd=MacdSettings(**ind.get("macd", {})),
            bollinger=BollingerSettings(**ind.get("bollinger", {})),
            stochastic=StochasticSettings(**ind.get("stochastic", {})),
            atr=AtrSettings(**ind.get("atr", {})),
            adx=AdxSettings(**ind.get("adx", {})),
            volume=VolumeSettings(**ind.get("volume", {})),
        )
        risk_payload = dict(payload.get("risk", {}))
        if "take_profits" in risk_payload:
            risk_payload["take_profits"] = tuple(risk_payload["take_profits"])
        return cls(
            name=payload["name"],
            timeframe=payload["timeframe"],
            indicators=indicators,
            risk=RiskManagement(**risk_payload),
            min_signal_strength=payload.get("min_signal_strength", 5),
            max_simultaneous_signals=payload.get("max_simultaneous_signals", 5),
            description=payload.get("description", ""),
        )

    def expected_signals_per_day(self) -> int:
        candles_per_day = 24 * 60 / timeframe_minutes(self.timeframe)
        strength_multiplier = max(0.1, 1 - (self.min_signal_strength - 5) * 0.1)
        return round(candles_per_day * _BASE_SIGNAL_RATE[self.type] * strength_multiplier)

    def _validate_parameters(self) -> None:
        if not self.name or not self.name.strip():
            raise ValidationError("Strategy name cannot be empty")
        if len(self.name) > 50:
            raise ValidationError("Strategy name cannot exceed 50 characters")
        if not 1 <= self.min_signal_strength <= 10:
            raise ValidationError("Minimum signal strength must be between 1 and 10")
        if not 1 <= self.max_simultaneous_signals <= 20:
            raise ValidationError("Max simultaneous signals must be between 1 and 20")
        try:
            timeframe_minutes(self.timeframe)
        except (KeyError, ValueError, IndexError) as exc:
            raise ValidationError(f"Unknown timeframe: {self.timeframe}") from exc

    def _validate_indicators(self) -> None:
        ind = self.indicators
        if not ind.ema.short < ind.ema.medium < ind.ema.long:
            raise ValidationError("EMA periods must be in ascending order: short < medium < long")
        if ind.ema.short < 1:
            raise ValidationError("EMA periods must be positive integers")
        if not 2 <= ind.rsi.period <= 50:
            raise ValidationError("RSI period must be between 2 and 50")
        if ind.rsi.oversold >= ind.rsi.overbought:
            raise ValidationError("RSI oversold level must be less than overbought level")
        if ind.rsi.oversold < 0 or ind.rsi.overbought > 100:
            raise ValidationError("RSI levels must be between 0 and 100")
        if ind.macd.fast_period >= ind.macd.slow_period:
            raise ValidationError("MACD fast period must be less than slow period")
        if ind.macd.fast_period < 1 or ind.macd.signal_period < 1:
            raise ValidationError("MACD periods must be positive integers")
        if ind.bollinger.period < 2:
            raise ValidationError("Bollinger Bands period must be at least 2")
        if not 0 < ind.bollinger.std_dev <= 5:
            raise ValidationError("Bollinger Bands standard deviation must be between 0 and 5")
        if ind.stochastic.k_period < 1 or ind.stochastic.d_period < 1:
            raise ValidationError("Stochastic periods must be positive")
        if ind.atr.period < 1 or ind.adx.period < 1:
            raise ValidationError("ATR and ADX periods must be positive")
        if ind.volume.threshold <= 0:
            raise ValidationError("Volume threshold must be positive")
        if ind.volume.period < 1:
            raise ValidationError("Volume period must be at least 1")

    def _validate_risk(self) -> None:
        risk = self.risk
        if not 0 < risk.stop_loss < 1:
            raise ValidationError("Stop loss must be between 0 and 1")
        if not risk.take_profits:
            raise ValidationError("At least one take profit level is required")
        if len(risk.take_profits) > 5:
            raise ValidationError("Maximum 5 take profit levels allowed")
        if any(not 0 < tp < 2 for tp in risk.take_profits):
            raise ValidationError("Take profit levels must be between 0 and 2")
        if any(b <= a for a, b in zip(risk.take_profits, risk.take_profits[1:])):
            raise ValidationError("Take profit levels must be in ascending order")
        if not 0 < risk.max_risk_per_trade <= 10:
            raise ValidationError("Max risk per trade must be between 0 and 10")
        if risk.risk_reward_ratio <= 0:
            raise ValidationError("Risk/reward ratio must be positive")
        if risk.take_profits[0] / risk.stop_loss < 1:
            raise ValidationError("First take profit should provide at least 1:1 risk/reward ratio")


def scalping_strategy() -> Strategy:
    return Strategy(
        name="Advanced Scalping",
        description="High-frequency strategy for 1-5 minute timeframes",
        timeframe="1m",
        indicators=IndicatorSettings(
            ema=EmaSettings(3, 7, 14),
            rsi=RsiSettings(9, 25, 75),
            macd=MacdSettings(8, 17, 9),
            bollinger=BollingerSettings(14, 2.0),
            volume=VolumeSettings(2.0, 10),
        ),
        risk=RiskManagement(
            stop_loss=0.008,
            take_profits=(0.01, 0.015, 0.02),
            max_risk_per_trade=1.0,
            risk_reward_ratio=1.5,
        ),
        min_signal_strength=7,
        max_simultaneous_signals=3,
    )


def swing_strategy() -> Strategy:
    return Strategy(
        name="Swing Trading",
        description="Medium-term strategy for 1-4 hour timeframes",
        timeframe="1h",
        indicators=IndicatorSettings(
            ema=EmaSettings(9, 21, 50),
            rsi=RsiSettings(14, 35, 65),
            macd=MacdSettings(12, 26, 9),
            bollinger=BollingerSettings(20, 2.0),
            volume=VolumeSettings(1.3, 20),
        ),
        risk=RiskManagement(
            stop_loss=0.025,
            take_profits=(0.03, 0.04, 0.05),
            max_risk_per_trade=2.0,
            risk_reward_ratio=1.5,
        ),
        min_signal_strength=6,
        max_simultaneous_signals=6,
    )
