from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from .models import Candle


@dataclass(slots=True)
class ExchangeHealth:
    is_healthy: bool
    rate_limit_remaining: int | None = None
    message: str = ""

    @property
    def can_poll(self) -> bool:
        if not self.is_healthy:
            return False
        return self.rate_limit_remaining is None or self.rate_limit_remaining > 0


class ExchangeAdapter(ABC):
    name: str

    @abstractmethod
    async def get_candles(self, symbol: str, timeframe: str, limit: int) -> Sequence[Candle]:
        raise NotImplementedError

    async def health(self) -> ExchangeHealth:
        return ExchangeHealth(is_healthy=True)

    async def close(self) -> None:
        return None


class TimeProvider(ABC):
    @abstractmethod
    def now(self) -> datetime:
        raise NotImplementedError
