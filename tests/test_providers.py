from __future__ import annotations

from datetime import timezone

import httpx
import pytest

from conftest import FIXED_NOW
from crypto_signals.config.models import ExchangeConfig
from crypto_signals.data.models import MarketData
from crypto_signals.data.provider_base import TimeProvider
from crypto_signals.data.providers import BinanceExchangeAdapter, MockExchangeAdapter
from crypto_signals.errors import ExchangeError


class FixedTime(TimeProvider):
    def now(self):
        return FIXED_NOW


@pytest.mark.asyncio
async def test_mock_adapter_is_reproducible_and_valid():
    first = await MockExchangeAdapter(time_provider=FixedTime(), seed=7).get_candles("BTC/USDT", "15m", 80)
    second = await MockExchangeAdapter(time_provider=FixedTime(), seed=7).get_candles("BTC/USDT", "15m", 80)
    assert first == second
    assert len(first) == 80
    assert first[-1].timestamp == FIXED_NOW
    assert (first[1].timestamp - first[0].timestamp).total_seconds() == 900
    MarketData(symbol="BTC/USDT", timeframe="15m", exchange="mock", candles=list(first), timestamp=FIXED_NOW)


def _binance(handler, **config):
    client = httpx.AsyncClient(base_url="https://api.example.test", transport=httpx.MockTransport(handler))
    return BinanceExchangeAdapter(ExchangeConfig(**config), client=client)


@pytest.mark.asyncio
async def test_binance_klines_are_parsed():
    seen = []
    opened = int(FIXED_NOW.timestamp() * 1000)

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[[opened, "100", "101", "99", "100.5", "12.5", opened + 3599999]])

    candles = await _binance(handler).get_candles("BTC/USDT", "1h", 1)

    assert seen[0].url.path == "/api/v3/klines"
    assert seen[0].url.params["symbol"] == "BTCUSDT"
    assert seen[0].url.params["limit"] == "1"
    assert candles[0].timestamp == FIXED_NOW.astimezone(timezone.utc)
    assert candles[0].close == 100.5
    assert candles[0].volume == 12.5


@pytest.mark.asyncio
async def test_binance_errors_become_exchange_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500)

    with pytest.raises(ExchangeError):
        await _binance(handler, retry_attempts=1).get_candles("BTC/USDT", "1h", 10)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_binance_health_reads_rate_limit_weight():
    def handler(request):
        return httpx.Response(200, json={}, headers={"x-mbx-used-weight-1m": "1150"})

    health = await _binance(handler).health()
    assert health.is_healthy
    assert health.rate_limit_remaining == 50
    assert health.can_poll

    exhausted = await _binance(
        lambda request: httpx.Response(200, json={}, headers={"x-mbx-used-weight-1m": "1300"})
    ).health()
    assert not exhausted.can_poll

    down = await _binance(lambda request: httpx.Response(503)).health()
    assert not down.is_healthy
