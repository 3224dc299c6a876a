from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Tuple

from crypto_signals.data.models import utcnow
from crypto_signals.errors import InvalidStateTransition, ValidationError

if TYPE_CHECKING:
    from crypto_signals.analysis.models import MarketAnalysis
    from crypto_signals.signals.scorer import SignalScore

MAX_TAKE_PROFITS = 3


class SignalDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


_ACTIVE = {SignalStatus.PENDING, SignalStatus.SENT}


@dataclass(slots=True, frozen=True)
class SignalTargets:
    stop_loss: float
    take_profits: Tuple[float, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "take_profits", tuple(self.take_profits))


@dataclass(slots=True)
class Signal:
    """A trade recommendation; only the status fields change after creation."""

    pair: str
    direction: SignalDirection
    entry: float
    targets: SignalTargets
    confidence: float
    reasoning: Tuple[str, ...]
    exchange: str
    timeframe: str
    strategy: str
    status: SignalStatus = SignalStatus.PENDING
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)
    sent_at: datetime | None = None
    executed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.pair = self.pair.upper()
        self.direction = SignalDirection(self.direction)
        self.status = SignalStatus(self.status)
        self.reasoning = tuple(self.reasoning)
        self._validate()

    def _validate(self) -> None:
        if not math.isfinite(self.confidence) or not 0 <= self.confidence <= 10:
            raise ValidationError("Confidence must be between 0 and 10")
        if not self.reasoning:
            raise ValidationError("At least one reasoning line is required")
        if len(self.reasoning) > 10:
            raise ValidationError("Maximum 10 reasoning lines allowed")
        if any(not line or not line.strip() for line in self.reasoning):
            raise ValidationError("Reasoning lines cannot be empty")
        take_profits = self.targets.take_profits
        if not take_profits:
            raise ValidationError("At least one take profit target is required")
        if len(take_profits) > MAX_TAKE_PROFITS:
            raise ValidationError(f"Maximum {MAX_TAKE_PROFITS} take profit targets allowed")
        if self.entry <= 0:
            raise ValidationError("Entry price must be positive")
        stop_loss = self.targets.stop_loss
        if self.direction is SignalDirection.LONG:
            if stop_loss >= self.entry:
                raise ValidationError("Stop loss must be below entry price for LONG signals")
            if any(tp <= self.entry for tp in take_profits):
                raise ValidationError("Take profit targets must be above entry price for LONG signals")
        else:
            if stop_loss <= self.entry:
                raise ValidationError("Stop loss must be above entry price for SHORT signals")
            if any(tp >= self.entry for tp in take_profits):
                raise ValidationError("Take profit targets must be below entry price for SHORT signals")

    # status machine

    def mark_as_sent(self, now: datetime | None = None) -> None:
        if self.status is not SignalStatus.PENDING:
            raise InvalidStateTransition("signal", self.status.value, "mark as sent")
        self.status = SignalStatus.SENT
        self.sent_at = now or utcnow()

    def mark_as_executed(self, now: datetime | None = None) -> None:
        if self.status is not SignalStatus.SENT:
            raise InvalidStateTransition("signal", self.status.value, "mark as executed")
        self.status = SignalStatus.EXECUTED
        self.executed_at = now or utcnow()

    def mark_as_failed(self) -> None:
        if self.status not in _ACTIVE:
            raise InvalidStateTransition("signal", self.status.value, "mark as failed")
        self.status = SignalStatus.FAILED

    def cancel(self) -> None:
        if self.status is not SignalStatus.PENDING:
            raise InvalidStateTransition("signal", self.status.value, "cancel")
        self.status = SignalStatus.CANCELLED

    @property
    def is_active(self) -> bool:
        return self.status in _ACTIVE

    @property
    def is_completed(self) -> bool:
        return not self.is_active

    def risk_reward(self) -> float:
        risk = abs(self.entry - self.targets.stop_loss)
        if risk == 0:
            return 0.0
        take_profits = self.targets.take_profits
        primary = take_profits[1] if len(take_profits) > 1 else take_profits[0]
        return round(abs(primary - self.entry) / risk, 2)

    def potential_profit(self, target_index: int = 0) -> float:
        if not 0 <= target_index < len(self.targets.take_profits):
            raise ValidationError("Target index out of bounds")
        target = self.targets.take_profits[target_index]
        if self.direction is SignalDirection.LONG:
            return (target - self.entry) / self.entry * 100
        return (self.entry - target) / self.entry * 100

    def potential_loss(self) -> float:
        if self.direction is SignalDirection.LONG:
            return (self.entry - self.targets.stop_loss) / self.entry * 100
        return (self.targets.stop_loss - self.entry) / self.entry * 100

    def age_in_minutes(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        return math.floor((now - self.created_at).total_seconds() / 60)

    def is_expired(self, max_age_minutes: float = 60, now: datetime | None = None) -> bool:
        return self.age_in_minutes(now) > max_age_minutes

    @property
    def strength(self) -> str:
        score = self.confidence + len(self.reasoning) * 0.5
        if score >= 9:
            return "VERY_STRONG"
        if score >= 7:
            return "STRONG"
        if score >= 5:
            return "MODERATE"
        return "WEAK"

    def to_dict(self, now: datetime | None = None) -> dict:
        return {
            "id": self.id,
            "pair": self.pair,
            "direction": self.direction.value,
            "entry": self.entry,
            "targets": {
                "stop_loss": self.targets.stop_loss,
                "take_profits": list(self.targets.take_profits),
            },
            "confidence": self.confidence,
            "reasoning": list(self.reasoning),
            "exchange": self.exchange,
            "timeframe": self.timeframe,
            "strategy": self.strategy,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "risk_reward": self.risk_reward(),
            "strength": self.strength,
            "age_minutes": self.age_in_minutes(now),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Signal":
        targets = payload["targets"]

        def _parse(key: str) -> datetime | None:
            raw = payload.get(key)
            return datetime.fromisoformat(raw) if raw else None

        return cls(
            id=payload["id"],
            pair=payload["pair"],
            direction=SignalDirection(payload["direction"]),
            entry=float(payload["entry"]),
            targets=SignalTargets(
                stop_loss=float(targets["stop_loss"]),
                take_profits=tuple(float(tp) for tp in targets["take_profits"]),
            ),
            confidence=float(payload["confidence"]),
            reasoning=tuple(payload["reasoning"]),
            exchange=payload["exchange"],
            timeframe=payload["timeframe"],
            strategy=payload["strategy"],
            status=SignalStatus(payload.get("status", SignalStatus.PENDING.value)),
            created_at=_parse("created_at") or utcnow(),
            sent_at=_parse("sent_at"),
            executed_at=_parse("executed_at"),
        )


@dataclass(slots=True)
class GenerationResult:
    should_generate: bool
    reason: str
    signal: Signal | None = None
    analysis: "MarketAnalysis | None" = None
    score: "SignalScore | None" = None
    processing_ms: float = 0.0

    @property
    def confidence(self) -> float:
        return self.signal.confidence if self.signal else 0.0


@dataclass(slots=True, frozen=True)
class MarketConditions:
    """Condition deltas fed to :func:`optimize_signal`."""

    volatility: float = 0.0
    volume_ratio: float = 1.0
    trend_strength: float = 0.0
    conflicting_signals: bool = False
