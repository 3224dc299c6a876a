"""Exchange adapters: a synthetic one for demos/tests and a REST klines client."""

from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import List, Sequence

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from crypto_signals.config.models import ExchangeConfig
from crypto_signals.errors import ExchangeError

from .models import Candle, timeframe_minutes
from .provider_base import ExchangeAdapter, ExchangeHealth, TimeProvider

logger = logging.getLogger(__name__)


class SystemTimeProvider(TimeProvider):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockExchangeAdapter(ExchangeAdapter):
    """Synthesizes a random-walk candle series ending at the current time."""

    def __init__(
        self,
        name: str = "mock",
        time_provider: TimeProvider | None = None,
        base_price: float = 60000.0,
        seed: int | None = None,
    ) -> None:
        self.name = name
        self._time = time_provider or SystemTimeProvider()
        self._base_price = base_price
        self._random = random.Random(seed)

    async def get_candles(self, symbol: str, timeframe: str, limit: int) -> Sequence[Candle]:
        now = self._time.now()
        minutes = timeframe_minutes(timeframe)
        candles: list[Candle] = []
        price = self._base_price
        for i in reversed(range(limit)):
            ts = now - timedelta(minutes=minutes * i)
            open_price = price * (1 + self._random.uniform(-0.004, 0.004))
            close = open_price * (1 + self._random.uniform(-0.006, 0.006))
            high = max(open_price, close) * (1 + self._random.uniform(0, 0.002))
            low = min(open_price, close) * (1 - self._random.uniform(0, 0.002))
            volume = self._random.uniform(10, 1000)
            price = close
            candles.append(
                Candle(timestamp=ts, open=open_price, high=high, low=low, close=close, volume=volume)
            )
        return candles


class BinanceExchangeAdapter(ExchangeAdapter):
    """Retrieve OHLCV candles from a Binance-compatible REST API."""

    def __init__(self, config: ExchangeConfig, client: httpx.AsyncClient | None = None) -> None:
        self.name = config.name
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url, timeout=config.timeout_seconds
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=1, max=8),
            stop=stop_after_attempt(self._config.retry_attempts),
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        )

    async def get_candles(self, symbol: str, timeframe: str, limit: int) -> Sequence[Candle]:
        params = {"symbol": symbol.replace("/", ""), "interval": timeframe, "limit": limit}
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.get(self._config.kline_path, params=params)
                    response.raise_for_status()
                    raw = response.json()
                    return [self._parse_kline(item) for item in raw]
        except httpx.HTTPError as exc:
            raise ExchangeError(f"{self.name}: failed to fetch {symbol} {timeframe}: {exc}") from exc
        raise ExchangeError("Unreachable get_candles")

    async def health(self) -> ExchangeHealth:
        try:
            response = await self._client.get(self._config.ping_path)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Health check failed for %s: %s", self.name, exc)
            return ExchangeHealth(is_healthy=False, message=str(exc))
        used = response.headers.get("x-mbx-used-weight-1m")
        remaining = None
        if used is not None and used.isdigit():
            remaining = max(self._config.rate_limit_per_minute - int(used), 0)
        return ExchangeHealth(is_healthy=True, rate_limit_remaining=remaining)

    @staticmethod
    def _parse_kline(row: List) -> Candle:
        return Candle(
            timestamp=datetime.fromtimestamp(row[0] / 1000, tz=timezone.utc),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
        )

    async def close(self) -> None:
        await self._client.aclose()
