from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, fixed_clock, make_candles, make_market_data, make_pair
from crypto_signals.analysis.market import MarketAnalyzer
from crypto_signals.analysis.models import RiskLevel
from crypto_signals.config.models import AnalysisConfig
from crypto_signals.errors import ValidationError
from crypto_signals.repositories.memory import InMemorySignalRepository
from crypto_signals.signals.generator import (
    ConfluenceSignalGenerator,
    ScoredSignalGenerator,
    TargetPlan,
    build_signal_generator,
)
from crypto_signals.signals.models import SignalDirection
from crypto_signals.signals.scorer import SignalScorer
from crypto_signals.strategy.pair import PairCategory


def _generator(cls=ScoredSignalGenerator, repository=None, config=None):
    return cls(
        MarketAnalyzer(clock=fixed_clock),
        SignalScorer(clock=fixed_clock),
        repository if repository is not None else InMemorySignalRepository(clock=fixed_clock),
        config=config,
        clock=fixed_clock,
    )


@pytest.mark.asyncio
async def test_scored_generator_emits_long_signal(btc_pair, rising_market):
    result = await _generator().generate(btc_pair, rising_market)

    assert result.should_generate, result.reason
    signal = result.signal
    assert signal.direction is SignalDirection.LONG
    assert signal.pair == "BTC/USDT"
    assert signal.exchange == "binance"
    assert signal.timeframe == "1h"
    assert signal.strategy == "Scored (Swing Trading)"
    assert signal.created_at == FIXED_NOW
    assert signal.entry == pytest.approx(rising_market.current_price * 1.001)
    assert signal.potential_loss() == pytest.approx(2.0)
    assert signal.potential_profit(0) == pytest.approx(2.7)
    assert signal.risk_reward() == 1.8
    assert signal.confidence == 6.6
    assert 1 <= len(signal.reasoning) <= 5
    assert result.score.total == 6.8
    assert result.confidence == 6.6


@pytest.mark.asyncio
async def test_mismatched_market_raises(btc_pair):
    data = make_market_data(symbol="ETH/USDT")
    with pytest.raises(ValidationError):
        await _generator().generate(btc_pair, data)
    other_exchange = make_market_data(exchange="kraken")
    with pytest.raises(ValidationError):
        await _generator().generate(btc_pair, other_exchange)


@pytest.mark.asyncio
async def test_cooldown_blocks_generation(rising_market):
    pair = make_pair(cooldown=300)
    pair.record_signal(FIXED_NOW - timedelta(seconds=60))
    result = await _generator().generate(pair, rising_market)
    assert not result.should_generate
    assert result.reason == "Cooldown active: 240s remaining"
    assert result.signal is None


@pytest.mark.asyncio
async def test_inactive_pair_is_rejected(btc_pair, rising_market):
    btc_pair.deactivate()
    result = await _generator().generate(btc_pair, rising_market)
    assert not result.should_generate
    assert "inactive" in result.reason


@pytest.mark.asyncio
async def test_insufficient_candles_are_rejected(btc_pair):
    data = make_market_data(make_candles(count=40))
    result = await _generator().generate(btc_pair, data)
    assert not result.should_generate
    assert result.reason == "Insufficient market data: 40 candles, need 50"


@pytest.mark.asyncio
async def test_configured_minimum_raises_the_floor(btc_pair, rising_market):
    result = await _generator(config=AnalysisConfig(min_candles=80)).generate(btc_pair, rising_market)
    assert result.reason == "Insufficient market data: 60 candles, need 80"


@pytest.mark.asyncio
async def test_stale_market_data_is_rejected(btc_pair):
    data = make_market_data(timestamp=FIXED_NOW - timedelta(minutes=16))
    result = await _generator().generate(btc_pair, data)
    assert not result.should_generate
    assert "stale" in result.reason


@pytest.mark.asyncio
async def test_open_signal_limit(btc_pair, rising_market):
    repository = InMemorySignalRepository(clock=fixed_clock)
    generator = _generator(repository=repository)
    limit = btc_pair.strategy.max_simultaneous_signals
    for _ in range(limit):
        result = await generator.generate(btc_pair, rising_market)
        await repository.save(result.signal)
    blocked = await generator.generate(btc_pair, rising_market)
    assert not blocked.should_generate
    assert blocked.reason.startswith("Too many active signals")


@pytest.mark.asyncio
async def test_confluence_rejects_divergent_indicators(btc_pair, rising_market):
    result = await _generator(ConfluenceSignalGenerator).generate(btc_pair, rising_market)
    assert not result.should_generate
    assert result.reason == "Indicator strength too low: 4/10"
    assert result.analysis is not None


@pytest.mark.asyncio
async def test_generate_batch_keys_by_pair(rising_market):
    btc = make_pair()
    eth = make_pair(symbol="ETH/USDT")
    eth_data = make_market_data(symbol="ETH/USDT", candles=make_candles(count=20))
    results = await _generator().generate_batch([(btc, rising_market), (eth, eth_data)])
    assert set(results) == {"binance:BTC/USDT", "binance:ETH/USDT"}
    assert results["binance:BTC/USDT"].should_generate
    assert not results["binance:ETH/USDT"].should_generate


def test_min_confidence_by_category_and_risk():
    assert ScoredSignalGenerator.min_confidence(PairCategory.CRYPTO_MAJOR, RiskLevel.MEDIUM) == 45
    assert ScoredSignalGenerator.min_confidence(PairCategory.MEME, RiskLevel.VERY_HIGH) == 70
    assert ScoredSignalGenerator.min_confidence(PairCategory.CRYPTO_MAJOR, RiskLevel.LOW) == 35


def test_target_plan_is_stretched_to_reward_floor():
    plan = TargetPlan(0.02, (0.02, 0.025))
    stretched = plan.with_min_reward(1.5)
    assert stretched.reward_to_risk() == pytest.approx(1.5)
    assert stretched.stop_loss == 0.02
    assert plan.with_min_reward(1.0) is plan


def test_unknown_generator_kind():
    with pytest.raises(ValidationError):
        build_signal_generator(
            "magic", MarketAnalyzer(), SignalScorer(), InMemorySignalRepository()
        )


@pytest.mark.asyncio
async def test_confluence_uses_strategy_strength_as_threshold(rising_market):
    pair = make_pair(min_signal_strength=7)
    result = await _generator(ConfluenceSignalGenerator).generate(pair, rising_market)
    assert result.reason == "Analysis confidence 64% below threshold 70%"


@pytest.mark.asyncio
async def test_scored_generator_emits_short_signal_on_falling_market(btc_pair):
    falling = make_market_data(make_candles(step=-0.003))
    result = await _generator().generate(btc_pair, falling)

    assert result.should_generate, result.reason
    signal = result.signal
    assert signal.direction is SignalDirection.SHORT
    assert signal.entry == pytest.approx(falling.current_price * 0.999)
    assert max(signal.targets.take_profits) < signal.entry < signal.targets.stop_loss
    assert list(signal.targets.take_profits) == sorted(signal.targets.take_profits, reverse=True)
    assert signal.potential_loss() == pytest.approx(2.0)
    assert signal.risk_reward() >= btc_pair.strategy.risk.risk_reward_ratio
