from __future__ import annotations

import asyncio
import json
from datetime import timedelta

import pytest

from conftest import FIXED_NOW, fixed_clock, make_pair, make_signal
from crypto_signals.errors import RepositoryError, ResourceNotFoundError, ValidationError
from crypto_signals.repositories.file import FilePairRepository
from crypto_signals.repositories.memory import InMemoryPairRepository, InMemorySignalRepository
from crypto_signals.signals.models import SignalStatus


@pytest.mark.asyncio
async def test_signal_indexes_follow_status_changes():
    repository = InMemorySignalRepository(clock=fixed_clock)
    signal = make_signal()
    await repository.save(signal)
    assert await repository.find_active_by_pair("btc/usdt") == [signal]

    signal.mark_as_sent(FIXED_NOW)
    await repository.update(signal)
    assert await repository.find_by_status(SignalStatus.PENDING) == []
    assert await repository.find_by_status(SignalStatus.SENT) == [signal]

    signal.mark_as_failed()
    await repository.update(signal)
    assert await repository.find_active() == []
    assert await repository.find_active_by_pair("BTC/USDT") == []


@pytest.mark.asyncio
async def test_duplicate_save_and_unknown_update():
    repository = InMemorySignalRepository()
    signal = make_signal()
    await repository.save(signal)
    with pytest.raises(ValidationError):
        await repository.save(signal)
    with pytest.raises(ResourceNotFoundError):
        await repository.update(make_signal())


@pytest.mark.asyncio
async def test_find_recent_is_newest_first():
    repository = InMemorySignalRepository()
    older = make_signal(created_at=FIXED_NOW - timedelta(hours=1))
    newer = make_signal()
    await repository.save(older)
    await repository.save(newer)
    assert await repository.find_recent(1) == [newer]
    assert len(repository) == 2


@pytest.mark.asyncio
async def test_cleanup_promotes_old_sent_signals():
    repository = InMemorySignalRepository(clock=fixed_clock)
    old_sent = make_signal(created_at=FIXED_NOW - timedelta(minutes=90))
    old_sent.mark_as_sent(FIXED_NOW - timedelta(minutes=89))
    old_pending = make_signal(created_at=FIXED_NOW - timedelta(minutes=90))
    fresh_sent = make_signal(created_at=FIXED_NOW - timedelta(minutes=10))
    fresh_sent.mark_as_sent(FIXED_NOW)
    for signal in (old_sent, old_pending, fresh_sent):
        await repository.save(signal)

    assert await repository.cleanup_expired_signals(60) == [old_sent]
    assert old_sent.status is SignalStatus.EXECUTED
    assert old_sent.executed_at == FIXED_NOW
    assert old_pending.status is SignalStatus.PENDING
    assert await repository.find_by_status(SignalStatus.EXECUTED) == [old_sent]


@pytest.mark.asyncio
async def test_memory_pair_repository_lookup():
    btc = make_pair()
    eth = make_pair(symbol="ETH/USDT", exchange="kraken")
    repository = InMemoryPairRepository([btc, eth])
    eth.deactivate()
    assert await repository.find_active() == [btc]
    assert await repository.find_by_symbol("eth/usdt") == [eth]
    assert await repository.find_by_symbol("ETH/USDT", exchange="binance") == []
    with pytest.raises(ResourceNotFoundError):
        await repository.update(make_pair())
    await repository.delete(btc.id)
    assert await repository.find_by_id(btc.id) is None


@pytest.mark.asyncio
async def test_file_repository_round_trip(tmp_path):
    path = tmp_path / "data" / "pairs.json"
    repository = FilePairRepository(path)
    assert await repository.find_all() == []

    pair = make_pair(cooldown=60)
    await repository.save(pair)
    pair.record_signal(FIXED_NOW)
    await repository.update(pair)

    reopened = FilePairRepository(path)
    stored = await reopened.find_by_id(pair.id)
    assert stored.symbol == "BTC/USDT"
    assert stored.total_signals_generated == 1
    assert stored.last_signal_time == FIXED_NOW
    assert json.loads(path.read_text())["version"] == 1
    assert [p.name for p in path.parent.iterdir()] == ["pairs.json"]


@pytest.mark.asyncio
async def test_file_repository_missing_and_corrupt(tmp_path):
    path = tmp_path / "pairs.json"
    repository = FilePairRepository(path)
    with pytest.raises(ResourceNotFoundError):
        await repository.update(make_pair())
    with pytest.raises(ResourceNotFoundError):
        await repository.delete("missing")
    path.write_text("{not json")
    with pytest.raises(RepositoryError):
        await repository.find_all()


@pytest.mark.asyncio
async def test_file_repository_concurrent_saves_keep_every_pair(tmp_path):
    path = tmp_path / "pairs.json"
    repository = FilePairRepository(path)
    symbols = ["BTC/USDT", "ETH/USDT", "SOL/USDT", "ADA/USDT", "XRP/USDT"]
    pairs = [make_pair(symbol=symbol) for symbol in symbols]

    await asyncio.gather(*(repository.save(pair) for pair in pairs))

    stored = await repository.find_all()
    assert sorted(pair.symbol for pair in stored) == sorted(symbols)
    assert [p.name for p in tmp_path.iterdir()] == ["pairs.json"]
