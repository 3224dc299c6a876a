from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import FIXED_NOW, make_pair
from crypto_signals.errors import InvalidStateTransition, ValidationError
from crypto_signals.strategy.models import (
    RiskManagement,
    Strategy,
    StrategyType,
    scalping_strategy,
    swing_strategy,
)
from crypto_signals.strategy.pair import PairSettings, SpecialRules, TradingPair


def test_presets_are_valid_and_typed():
    assert scalping_strategy().type is StrategyType.SCALPING
    assert swing_strategy().type is StrategyType.SWING
    assert swing_strategy().min_candles == 50


def test_strategy_rejects_descending_take_profits():
    with pytest.raises(ValidationError):
        Strategy(name="bad", timeframe="1h", risk=RiskManagement(stop_loss=0.02, take_profits=(0.05, 0.03)))


def test_strategy_rejects_first_target_below_stop():
    with pytest.raises(ValidationError):
        Strategy(name="bad", timeframe="1h", risk=RiskManagement(stop_loss=0.04, take_profits=(0.03, 0.05)))


def test_strategy_rejects_unknown_timeframe():
    with pytest.raises(ValidationError):
        Strategy(name="bad", timeframe="")


def test_optimize_widens_targets_in_volatile_markets():
    base = swing_strategy()
    tuned = base.optimize(0.08)
    assert tuned.risk.stop_loss == pytest.approx(base.risk.stop_loss * 1.2)
    assert tuned.indicators.rsi.oversold == 30
    assert tuned.name.endswith("(Optimized)")


def test_strategy_dict_round_trip():
    strategy = scalping_strategy()
    assert Strategy.from_dict(strategy.to_dict()) == strategy


def test_pair_symbol_must_match_assets():
    with pytest.raises(ValidationError):
        TradingPair(
            symbol="BTC/USDT",
            base_asset="ETH",
            quote_asset="USDT",
            exchange="binance",
            category="crypto_major",
            strategy=swing_strategy(),
        )


def test_pair_cooldown_in_seconds():
    pair = make_pair(cooldown=300)
    assert pair.can_generate_signal(FIXED_NOW)
    pair.record_signal(FIXED_NOW)
    assert pair.total_signals_generated == 1
    assert not pair.can_generate_signal(FIXED_NOW + timedelta(seconds=299))
    assert pair.remaining_cooldown(FIXED_NOW + timedelta(seconds=100)) == pytest.approx(200)
    assert pair.can_generate_signal(FIXED_NOW + timedelta(seconds=300))


def test_pair_activation_guards():
    pair = make_pair()
    with pytest.raises(InvalidStateTransition):
        pair.activate()
    pair.deactivate()
    assert not pair.is_active
    with pytest.raises(InvalidStateTransition):
        pair.deactivate()


def test_adapted_strategy_applies_special_rules():
    pair = TradingPair(
        symbol="DOGE/USDT",
        base_asset="DOGE",
        quote_asset="USDT",
        exchange="binance",
        category="meme",
        strategy=swing_strategy(),
        settings=PairSettings(
            volatility_multiplier=1.5,
            special_rules=SpecialRules(stop_loss_multiplier=1.2, take_profit_multiplier=1.5),
        ),
    )
    adapted = pair.adapted_strategy()
    assert adapted.risk.stop_loss == pytest.approx(0.03)
    assert adapted.risk.take_profits[0] == pytest.approx(0.045)
    assert adapted.indicators.rsi.oversold == 30
    assert adapted.indicators.rsi.overbought == 70


def test_auto_disable_after_poor_success_rate():
    pair = make_pair()
    for _ in range(10):
        pair.record_signal(FIXED_NOW)
    pair.mark_signal_successful()
    assert pair.should_auto_disable(FIXED_NOW)


def test_auto_disable_for_idle_old_pair():
    pair = make_pair()
    assert not pair.should_auto_disable(FIXED_NOW + timedelta(days=30))
    assert pair.should_auto_disable(FIXED_NOW + timedelta(days=31))


def test_weekend_rule():
    pair = TradingPair(
        symbol="ETH/USDT",
        base_asset="ETH",
        quote_asset="USDT",
        exchange="binance",
        category="crypto_major",
        strategy=swing_strategy(),
        settings=PairSettings(special_rules=SpecialRules(avoid_weekends=True)),
    )
    saturday = FIXED_NOW + timedelta(days=5)
    assert saturday.weekday() == 5
    assert not pair.is_good_time_to_trade(saturday)
    assert pair.is_good_time_to_trade(FIXED_NOW)


def test_pair_dict_round_trip():
    pair = make_pair(cooldown=120)
    pair.record_signal(FIXED_NOW)
    restored = TradingPair.from_dict(pair.to_dict())
    assert restored.id == pair.id
    assert restored.key == "binance:BTC/USDT"
    assert restored.settings.signal_cooldown == 120
    assert restored.last_signal_time == FIXED_NOW
    assert restored.total_signals_generated == 1
