from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FIXED_NOW, fixed_clock, make_candles, make_market_data, make_pair, make_signal
from crypto_signals.analysis.market import MarketAnalyzer
from crypto_signals.errors import ValidationError
from crypto_signals.events.bus import EventBus, EventType
from crypto_signals.notifications.base import NotificationResult
from crypto_signals.repositories.memory import InMemoryPairRepository, InMemorySignalRepository
from crypto_signals.signals.generator import ScoredSignalGenerator
from crypto_signals.signals.models import SignalStatus
from crypto_signals.signals.scorer import SignalScorer
from crypto_signals.usecases.generate_signal import GenerateSignalUseCase


def _notifications(success=True):
    service = MagicMock()
    service.send_signal_notification = AsyncMock(
        return_value=NotificationResult(success=success, delivered=["console"] if success else [])
    )
    return service


def _use_case(pairs=(), notifications=None, clock=fixed_clock):
    signals = InMemorySignalRepository(clock=clock)
    generator = ScoredSignalGenerator(
        MarketAnalyzer(clock=fixed_clock), SignalScorer(clock=fixed_clock), signals, clock=clock
    )
    bus = EventBus()
    events = []
    for event_type in EventType:
        bus.subscribe(event_type, events.append)
    pair_repository = InMemoryPairRepository(pairs)
    use_case = GenerateSignalUseCase(
        generator,
        signals,
        pair_repository,
        notifications or _notifications(),
        bus,
        clock=clock,
    )
    return use_case, signals, pair_repository, events


@pytest.mark.asyncio
async def test_execute_stores_notifies_and_announces(btc_pair, rising_market):
    use_case, signals, pairs, events = _use_case([btc_pair])

    signal = await use_case.execute(btc_pair, rising_market)

    assert signal is not None
    assert signal.status is SignalStatus.SENT
    assert signal.sent_at == FIXED_NOW
    assert await signals.find_by_status(SignalStatus.SENT) == [signal]
    assert btc_pair.last_signal_time == FIXED_NOW
    assert (await pairs.find_by_id(btc_pair.id)).total_signals_generated == 1

    assert [event.type for event in events] == ["signal.generated"]
    payload = events[0].payload
    assert payload["signal_id"] == signal.id
    assert payload["pair"] == "BTC/USDT"
    assert payload["direction"] == "LONG"
    assert payload["confidence"] == 6.6
    assert payload["timestamp"] == FIXED_NOW.isoformat()


@pytest.mark.asyncio
async def test_failed_delivery_keeps_signal_pending(btc_pair, rising_market):
    use_case, signals, _, events = _use_case([btc_pair], _notifications(success=False))
    signal = await use_case.execute(btc_pair, rising_market)
    assert signal.status is SignalStatus.PENDING
    assert events[0].type == "signal.generated"


@pytest.mark.asyncio
async def test_unknown_pair_is_saved(btc_pair, rising_market):
    use_case, _, pairs, _ = _use_case()
    await use_case.execute(btc_pair, rising_market)
    assert await pairs.find_by_id(btc_pair.id) is btc_pair


@pytest.mark.asyncio
async def test_rejection_returns_none(rising_market):
    pair = make_pair(cooldown=600)
    pair.record_signal(FIXED_NOW)
    use_case, signals, _, events = _use_case([pair])
    assert await use_case.execute(pair, rising_market) is None
    assert len(signals) == 0
    assert events == []


@pytest.mark.asyncio
async def test_mismatch_publishes_failure_and_raises(btc_pair):
    use_case, _, _, events = _use_case([btc_pair])
    data = make_market_data(symbol="ETH/USDT")
    with pytest.raises(ValidationError):
        await use_case.execute(btc_pair, data)
    assert [event.type for event in events] == ["signal.generation.failed"]
    assert events[0].payload["pair"] == "BTC/USDT"
    assert "does not match" in events[0].payload["error"]


@pytest.mark.asyncio
async def test_batch_isolates_failures_and_reports_once():
    symbols = ["BTC/USDT", "ETH/USDT", "SOL/USDT", "ADA/USDT"]
    items = [(make_pair(symbol=s), make_market_data(symbol=s)) for s in symbols]
    broken = make_pair(symbol="XRP/USDT")
    items.append((broken, make_market_data(symbol="BTC/USDT")))
    use_case, _, _, events = _use_case([pair for pair, _ in items])

    signals = await use_case.execute_for_multiple_pairs(items)

    assert sorted(signal.pair for signal in signals) == sorted(symbols)
    batch = [event for event in events if event.type == "signal.batch.completed"]
    assert len(batch) == 1
    assert batch[0].payload["total_pairs"] == 5
    assert batch[0].payload["signals_generated"] == 4
    assert {item["pair"] for item in batch[0].payload["signals"]} == set(symbols)
    assert sum(event.type == "signal.generation.failed" for event in events) == 1


@pytest.mark.asyncio
async def test_short_history_leaves_repository_untouched(btc_pair):
    use_case, signals, _, events = _use_case([btc_pair])
    data = make_market_data(make_candles(count=10))
    assert await use_case.execute(btc_pair, data) is None
    assert len(signals) == 0
    assert btc_pair.total_signals_generated == 0
    assert events == []


class SteppingClock:
    """Advance by ``step`` every time the time is read."""

    def __init__(self, start=FIXED_NOW, step=timedelta(seconds=1)):
        self.now = start
        self._step = step

    def __call__(self):
        current = self.now
        self.now += self._step
        return current


@pytest.mark.asyncio
async def test_accepted_signals_respect_cooldown_between_creation_times(rising_market):
    pair = make_pair(cooldown=8)
    clock = SteppingClock()
    use_case, signals, _, _ = _use_case([pair], clock=clock)

    for _ in range(30):
        await use_case.execute(pair, rising_market)

    accepted = sorted(await signals.find_by_status(SignalStatus.SENT), key=lambda signal: signal.created_at)
    assert len(accepted) >= 2
    gaps = [(b.created_at - a.created_at).total_seconds() for a, b in zip(accepted, accepted[1:])]
    assert min(gaps) >= 8
    assert pair.last_signal_time == accepted[-1].created_at


@pytest.mark.asyncio
async def test_expired_signal_counts_as_success_for_its_pair(btc_pair, rising_market):
    clock = SteppingClock(step=timedelta(0))
    use_case, _, _, _ = _use_case([btc_pair], clock=clock)
    signal = await use_case.execute(btc_pair, rising_market)
    assert btc_pair.successful_signals == 0

    later = FIXED_NOW + timedelta(hours=2)
    clock.now = later
    fresh = make_market_data(make_candles(end=later), timestamp=later)

    await use_case.execute(btc_pair, fresh)

    assert signal.status is SignalStatus.EXECUTED
    assert signal.executed_at == later
    assert btc_pair.successful_signals == 1
    assert btc_pair.total_signals_generated == 2
    assert btc_pair.success_rate() == 50.0


@pytest.mark.asyncio
async def test_expired_signal_of_another_pair_is_credited_through_repository(btc_pair):
    eth = make_pair(symbol="ETH/USDT")
    later = FIXED_NOW + timedelta(hours=2)
    use_case, signals, pairs, _ = _use_case([btc_pair, eth], clock=lambda: later)
    stale = make_signal(pair="ETH/USDT")
    stale.mark_as_sent(FIXED_NOW)
    await signals.save(stale)

    await use_case.execute(btc_pair, make_market_data(make_candles(end=later), timestamp=later))

    assert stale.status is SignalStatus.EXECUTED
    assert (await pairs.find_by_id(eth.id)).successful_signals == 1
    assert btc_pair.successful_signals == 0
