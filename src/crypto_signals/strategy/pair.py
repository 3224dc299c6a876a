from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping

from crypto_signals.data.models import utcnow
from crypto_signals.errors import InvalidStateTransition, ValidationError

from .models import Strategy


class PairCategory(str, Enum):
    CRYPTO_MAJOR = "crypto_major"
    CRYPTO_ALT = "crypto_alt"
    DEFI = "defi"
    MEME = "meme"


_CATEGORY_RISK_PERCENT = {
    PairCategory.CRYPTO_MAJOR: 2.0,
    PairCategory.CRYPTO_ALT: 1.5,
    PairCategory.DEFI: 1.0,
    PairCategory.MEME: 0.5,
}


@dataclass(slots=True, frozen=True)
class SpecialRules:
    stop_loss_multiplier: float = 1.0
    take_profit_multiplier: float = 1.0
    volume_weight: float = 1.0
    avoid_weekends: bool = False


@dataclass(slots=True, frozen=True)
class PairSettings:
    signal_cooldown: float = 300.0  # seconds
    volatility_multiplier: float = 1.0
    risk_adjustment: float = 1.0
    special_rules: SpecialRules = field(default_factory=SpecialRules)


@dataclass(slots=True, frozen=True)
class PerformanceMetrics:
    total_signals: int
    successful_signals: int
    success_rate: float
    average_signals_per_day: float
    days_since_creation: int
    is_performing: bool


@dataclass(slots=True)
class TradingPair:
    """A monitored symbol on one exchange with its strategy and counters.

    The counters are owned by the monitoring task of this pair; nothing else
    mutates them while monitoring is running.
    """

    symbol: str
    base_asset: str
    quote_asset: str
    exchange: str
    category: PairCategory
    strategy: Strategy
    settings: PairSettings = field(default_factory=PairSettings)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    is_active: bool = True
    last_signal_time: datetime | None = None
    total_signals_generated: int = 0
    successful_signals: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.symbol = self.symbol.upper()
        self.base_asset = self.base_asset.upper()
        self.quote_asset = self.quote_asset.upper()
        self.category = PairCategory(self.category)
        parts = self.symbol.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValidationError(f"Symbol must be in BASE/QUOTE format: {self.symbol}")
        if parts[0] != self.base_asset or parts[1] != self.quote_asset:
            raise ValidationError(f"Symbol {self.symbol} does not match assets {self.base_asset}/{self.quote_asset}")
        if self.settings.signal_cooldown < 0:
            raise ValidationError("Signal cooldown cannot be negative")
        self.adapted_strategy()

    @property
    def key(self) -> str:
        return f"{self.exchange}:{self.symbol}"

    def can_generate_signal(self, now: datetime | None = None) -> bool:
        return self.remaining_cooldown(now) <= 0

    def remaining_cooldown(self, now: datetime | None = None) -> float:
        """Seconds left before the next signal is allowed."""
        if self.last_signal_time is None:
            return 0.0
        now = now or utcnow()
        elapsed = (now - self.last_signal_time).total_seconds()
        return max(0.0, self.settings.signal_cooldown - elapsed)

    def record_signal(self, now: datetime | None = None) -> None:
        self.last_signal_time = now or utcnow()
        self.total_signals_generated += 1

    def mark_signal_successful(self) -> None:
        self.successful_signals += 1

    def success_rate(self) -> float:
        if self.total_signals_generated == 0:
            return 0.0
        return self.successful_signals / self.total_signals_generated * 100

    def is_good_time_to_trade(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        if self.settings.special_rules.avoid_weekends and now.weekday() >= 5:
            return False
        return True

    def recommended_position_size(self, account_balance: float) -> float:
        risk_percent = _CATEGORY_RISK_PERCENT[self.category] * self.settings.risk_adjustment
        return account_balance * risk_percent / 100

    def performance_metrics(self, now: datetime | None = None) -> PerformanceMetrics:
        now = now or utcnow()
        days = (now - self.created_at) // timedelta(days=1)
        per_day = self.total_signals_generated / days if days > 0 else 0.0
        success_rate = self.success_rate()
        return PerformanceMetrics(
            total_signals=self.total_signals_generated,
            successful_signals=self.successful_signals,
            success_rate=success_rate,
            average_signals_per_day=per_day,
            days_since_creation=days,
            is_performing=success_rate >= 60 and per_day >= 0.5,
        )

    def should_auto_disable(self, now: datetime | None = None) -> bool:
        metrics = self.performance_metrics(now)
        return (metrics.total_signals >= 10 and metrics.success_rate < 30) or (
            metrics.days_since_creation > 30 and metrics.average_signals_per_day < 0.1
        )

    def adapted_strategy(self) -> Strategy:
        """Strategy with this pair's special rules applied."""
        rules = self.settings.special_rules
        base = self.strategy
        risk = replace(
            base.risk,
            stop_loss=base.risk.stop_loss * rules.stop_loss_multiplier,
            take_profits=tuple(tp * rules.take_profit_multiplier for tp in base.risk.take_profits),
        )
        volume = replace(
            base.indicators.volume,
            threshold=base.indicators.volume.threshold * rules.volume_weight,
        )
        rsi = base.indicators.rsi
        if self.settings.volatility_multiplier > 1.2:
            rsi = replace(rsi, oversold=max(0, rsi.oversold - 5), overbought=min(100, rsi.overbought + 5))
        indicators = replace(base.indicators, volume=volume, rsi=rsi)
        return base.clone(name=base.name, indicators=indicators, risk=risk)

    def activate(self) -> None:
        if self.is_active:
            raise InvalidStateTransition("pair", "active", "activate")
        self.is_active = True

    def deactivate(self) -> None:
        if not self.is_active:
            raise InvalidStateTransition("pair", "inactive", "deactivate")
        self.is_active = False

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "base_asset": self.base_asset,
            "quote_asset": self.quote_asset,
            "exchange": self.exchange,
            "category": self.category.value,
            "settings": asdict(self.settings),
            "strategy": self.strategy.to_dict(),
            "is_active": self.is_active,
            "last_signal_time": self.last_signal_time.isoformat() if self.last_signal_time else None,
            "total_signals_generated": self.total_signals_generated,
            "successful_signals": self.successful_signals,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TradingPair":
        settings_payload = dict(payload.get("settings", {}))
        rules = SpecialRules(**settings_payload.pop("special_rules", {}))
        last_signal = payload.get("last_signal_time")
        return cls(
            id=payload["id"],
            symbol=payload["symbol"],
            base_asset=payload["base_asset"],
            quote_asset=payload["quote_asset"],
            exchange=payload["exchange"],
            category=PairCategory(payload["category"]),
            settings=PairSettings(special_rules=rules, **settings_payload),
            strategy=Strategy.from_dict(payload["strategy"]),
            is_active=payload.get("is_active", True),
            last_signal_time=datetime.fromisoformat(last_signal) if last_signal else None,
            total_signals_generated=payload.get("total_signals_generated", 0),
            successful_signals=payload.get("successful_signals", 0),
            created_at=datetime.fromisoformat(payload["created_at"]),
        )
