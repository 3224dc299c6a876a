from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Set

from crypto_signals.data.models import utcnow
from crypto_signals.errors import ResourceNotFoundError, ValidationError
from crypto_signals.signals.models import Signal, SignalStatus
from crypto_signals.strategy.pair import TradingPair

from .base import PairRepository, SignalRepository

logger = logging.getLogger(__name__)


class InMemorySignalRepository(SignalRepository):
    """Signals keyed by id with status and pair indexes kept in step."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._signals: Dict[str, Signal] = {}
        self._by_status: Dict[SignalStatus, Set[str]] = defaultdict(set)
        self._by_pair: Dict[str, Set[str]] = defaultdict(set)
        self._indexed_status: Dict[str, SignalStatus] = {}

    def _index(self, signal: Signal) -> None:
        previous = self._indexed_status.get(signal.id)
        if previous is not None:
            self._by_status[previous].discard(signal.id)
        self._by_status[signal.status].add(signal.id)
        self._by_pair[signal.pair].add(signal.id)
        self._indexed_status[signal.id] = signal.status

    async def save(self, signal: Signal) -> None:
        if signal.id in self._signals:
            raise ValidationError(f"Signal {signal.id} already exists")
        self._signals[signal.id] = signal
        self._index(signal)

    async def update(self, signal: Signal) -> None:
        if signal.id not in self._signals:
            raise ResourceNotFoundError(f"Signal {signal.id} not found")
        self._signals[signal.id] = signal
        self._index(signal)

    async def find_by_id(self, signal_id: str) -> Signal | None:
        return self._signals.get(signal_id)

    def _with_status(self, *statuses: SignalStatus) -> List[Signal]:
        ids = set().union(*(self._by_status[status] for status in statuses))
        return sorted((self._signals[i] for i in ids), key=lambda s: s.created_at, reverse=True)

    async def find_active(self) -> List[Signal]:
        return self._with_status(SignalStatus.PENDING, SignalStatus.SENT)

    async def find_active_by_pair(self, pair: str) -> List[Signal]:
        ids = self._by_pair.get(pair.upper(), set())
        active = [self._signals[i] for i in ids if self._signals[i].is_active]
        return sorted(active, key=lambda s: s.created_at, reverse=True)

    async def find_by_status(self, status: SignalStatus) -> List[Signal]:
        return self._with_status(status)

    async def find_recent(self, limit: int = 10) -> List[Signal]:
        ordered = sorted(self._signals.values(), key=lambda s: s.created_at, reverse=True)
        return ordered[:limit]

    async def cleanup_expired_signals(self, max_age_minutes: float) -> List[Signal]:
        now = self._clock()
        cutoff = now - timedelta(minutes=max_age_minutes)
        promoted: List[Signal] = []
        for signal in self._with_status(SignalStatus.SENT):
            if signal.created_at < cutoff:
                signal.mark_as_executed(now)
                self._index(signal)
                promoted.append(signal)
        if promoted:
            logger.info("Marked %d expired signals as executed", len(promoted))
        return promoted

    def __len__(self) -> int:
        return len(self._signals)


class InMemoryPairRepository(PairRepository):
    def __init__(self, pairs: Iterable[TradingPair] = ()) -> None:
        self._pairs: Dict[str, TradingPair] = {pair.id: pair for pair in pairs}

    async def save(self, pair: TradingPair) -> None:
        self._pairs[pair.id] = pair

    async def update(self, pair: TradingPair) -> None:
        if pair.id not in self._pairs:
            raise ResourceNotFoundError(f"Pair {pair.id} not found")
        self._pairs[pair.id] = pair

    async def delete(self, pair_id: str) -> None:
        if self._pairs.pop(pair_id, None) is None:
            raise ResourceNotFoundError(f"Pair {pair_id} not found")

    async def find_by_id(self, pair_id: str) -> TradingPair | None:
        return self._pairs.get(pair_id)

    async def find_all(self) -> List[TradingPair]:
        return list(self._pairs.values())

    async def save_all(self, pairs: Iterable[TradingPair]) -> None:
        self._pairs = {pair.id: pair for pair in pairs}
