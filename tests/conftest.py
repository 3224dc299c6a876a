import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

# make the src/ layout importable without installing the package
ROOT = Path(__file__).resolve().parents[1]
src_str = str(ROOT / "src")
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from crypto_signals.data.models import Candle, MarketData
from crypto_signals.signals.models import Signal, SignalDirection, SignalTargets
from crypto_signals.strategy.models import swing_strategy
from crypto_signals.strategy.pair import PairCategory, PairSettings, TradingPair

FIXED_NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_candles(
    count: int = 60,
    start: float = 100.0,
    step: float = 0.005,
    end: datetime = FIXED_NOW,
    interval: timedelta = timedelta(hours=1),
    base_volume: float = 1000.0,
    volume_growth: float = 1.03,
) -> List[Candle]:
    """Steady trend: each close moves ``step`` from the previous one."""
    candles: List[Candle] = []
    previous = start
    for i in range(count):
        close = previous * (1 + step)
        open_price = previous
        candles.append(
            Candle(
                timestamp=end - interval * (count - 1 - i),
                open=open_price,
                high=max(open_price, close) * 1.002,
                low=min(open_price, close) * 0.998,
                close=close,
                volume=base_volume * volume_growth**i,
            )
        )
        previous = close
    return candles


def make_market_data(
    candles: List[Candle] | None = None,
    symbol: str = "BTC/USDT",
    exchange: str = "binance",
    timeframe: str = "1h",
    timestamp: datetime = FIXED_NOW,
) -> MarketData:
    return MarketData(
        symbol=symbol,
        timeframe=timeframe,
        exchange=exchange,
        candles=candles if candles is not None else make_candles(),
        timestamp=timestamp,
    )


def make_pair(
    symbol: str = "BTC/USDT",
    exchange: str = "binance",
    category: PairCategory = PairCategory.CRYPTO_MAJOR,
    cooldown: float = 0.0,
    min_signal_strength: float = 5,
) -> TradingPair:
    base, quote = symbol.split("/")
    strategy = swing_strategy().clone(name="Swing Trading", min_signal_strength=min_signal_strength)
    return TradingPair(
        symbol=symbol,
        base_asset=base,
        quote_asset=quote,
        exchange=exchange,
        category=category,
        strategy=strategy,
        settings=PairSettings(signal_cooldown=cooldown),
        created_at=FIXED_NOW,
    )


@pytest.fixture
def clock():
    return fixed_clock


@pytest.fixture
def rising_market() -> MarketData:
    return make_market_data()


@pytest.fixture
def btc_pair() -> TradingPair:
    return make_pair()


def make_signal(**overrides) -> Signal:
    params = dict(
        pair="BTC/USDT",
        direction=SignalDirection.LONG,
        entry=100.0,
        targets=SignalTargets(stop_loss=98.0, take_profits=(103.0, 104.0, 105.0)),
        confidence=7.0,
        reasoning=("Trend up",),
        exchange="binance",
        timeframe="1h",
        strategy="Scored (Swing Trading)",
        created_at=FIXED_NOW,
    )
    params.update(overrides)
    return Signal(**params)
