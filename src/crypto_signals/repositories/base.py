from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, List

from crypto_signals.signals.models import Signal
from crypto_signals.strategy.pair import TradingPair


class SignalRepository(ABC):
    @abstractmethod
    async def save(self, signal: Signal) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update(self, signal: Signal) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_id(self, signal_id: str) -> Signal | None:
        raise NotImplementedError

    @abstractmethod
    async def find_active(self) -> List[Signal]:
        raise NotImplementedError

    @abstractmethod
    async def find_active_by_pair(self, pair: str) -> List[Signal]:
        raise NotImplementedError

    @abstractmethod
    async def find_recent(self, limit: int = 10) -> List[Signal]:
        raise NotImplementedError

    @abstractmethod
    async def cleanup_expired_signals(self, max_age_minutes: float) -> List[Signal]:
        """Promote SENT signals older than the window to EXECUTED and return them."""
        raise NotImplementedError


class PairRepository(ABC):
    @abstractmethod
    async def save(self, pair: TradingPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def update(self, pair: TradingPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, pair_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def find_by_id(self, pair_id: str) -> TradingPair | None:
        raise NotImplementedError

    @abstractmethod
    async def find_all(self) -> List[TradingPair]:
        raise NotImplementedError

    async def find_active(self) -> List[TradingPair]:
        return [pair for pair in await self.find_all() if pair.is_active]

    async def find_by_symbol(self, symbol: str, exchange: str | None = None) -> List[TradingPair]:
        symbol = symbol.upper()
        return [
            pair
            for pair in await self.find_all()
            if pair.symbol == symbol and (exchange is None or pair.exchange == exchange)
        ]

    @abstractmethod
    async def save_all(self, pairs: Iterable[TradingPair]) -> None:
        raise NotImplementedError
