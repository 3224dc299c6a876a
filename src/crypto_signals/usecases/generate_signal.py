from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Sequence, Tuple

from crypto_signals.config.models import AnalysisConfig
from crypto_signals.data.models import MarketData, utcnow
from crypto_signals.errors import ResourceNotFoundError
from crypto_signals.events.bus import EventBus, EventType
from crypto_signals.notifications.service import NotificationService
from crypto_signals.repositories.base import PairRepository, SignalRepository
from crypto_signals.signals.generator import SignalGenerator
from crypto_signals.signals.models import Signal
from crypto_signals.strategy.pair import TradingPair

logger = logging.getLogger(__name__)

SOURCE = "GenerateSignalUseCase"


class GenerateSignalUseCase:
    """Runs one generation attempt for a pair and persists/announces the result."""

    def __init__(
        self,
        generator: SignalGenerator,
        signal_repository: SignalRepository,
        pair_repository: PairRepository,
        notifications: NotificationService,
        event_bus: EventBus,
        config: AnalysisConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._generator = generator
        self._signals = signal_repository
        self._pairs = pair_repository
        self._notifications = notifications
        self._events = event_bus
        self._config = config or AnalysisConfig()
        self._clock = clock

    async def execute(self, pair: TradingPair, market_data: MarketData) -> Signal | None:
        try:
            self._generator.ensure_same_market(pair, market_data)
            executed = await self._signals.cleanup_expired_signals(self._config.signal_max_age_minutes)
            await self._credit_executed(pair, executed)

            now = self._clock()
            if not pair.is_good_time_to_trade(now):
                logger.info("Not a good time to trade %s", pair.symbol)
                return None

            result = await self._generator.generate(pair, market_data)
            if not result.should_generate or result.signal is None:
                logger.info("No signal for %s: %s", pair.symbol, result.reason)
                return None

            signal = result.signal
            await self._signals.save(signal)
            # cooldown is measured between signal creation times
            pair.record_signal(signal.created_at)
            await self._store_pair(pair)
        except Exception as exc:
            logger.error("Error generating signal for %s: %s", pair.symbol, exc)
            await self._events.publish(
                EventType.SIGNAL_GENERATION_FAILED,
                {"pair": pair.symbol, "exchange": market_data.exchange, "error": str(exc)},
                source=SOURCE,
            )
            raise

        await self._notify(signal)
        await self._events.publish(
            EventType.SIGNAL_GENERATED,
            {
                "signal_id": signal.id,
                "pair": signal.pair,
                "direction": signal.direction.value,
                "entry": signal.entry,
                "confidence": signal.confidence,
                "exchange": signal.exchange,
                "strategy": signal.strategy,
                "timestamp": signal.created_at.isoformat(),
            },
            source=SOURCE,
        )
        logger.info(
            "Signal %s stored for %s: %s, confidence %.1f, R:R %.2f",
            signal.id,
            pair.symbol,
            signal.direction.value,
            signal.confidence,
            signal.risk_reward(),
        )
        return signal

    async def _credit_executed(self, pair: TradingPair, executed: Sequence[Signal]) -> None:
        """Count promoted signals as successes for the pairs that produced them."""
        own = 0
        for signal in executed:
            if signal.pair == pair.symbol and signal.exchange == pair.exchange:
                pair.mark_signal_successful()
                own += 1
                continue
            for owner in await self._pairs.find_by_symbol(signal.pair, signal.exchange):
                owner.mark_signal_successful()
                await self._pairs.update(owner)
        if own:
            await self._store_pair(pair)
        if executed:
            logger.info("%d expired signals counted as executed", len(executed))

    async def _store_pair(self, pair: TradingPair) -> None:
        try:
            await self._pairs.update(pair)
        except ResourceNotFoundError:
            logger.warning("Pair %s was not stored yet, saving it", pair.key)
            await self._pairs.save(pair)

    async def _notify(self, signal: Signal) -> None:
        try:
            result = await self._notifications.send_signal_notification(signal)
            if result.success:
                signal.mark_as_sent(self._clock())
                await self._signals.update(signal)
            else:
                logger.warning("Signal %s was not delivered: %s", signal.id, "; ".join(result.errors))
        except Exception as exc:
            logger.exception("Notification for signal %s failed: %s", signal.id, exc)

    async def execute_for_multiple_pairs(
        self, pairs_with_data: Iterable[Tuple[TradingPair, MarketData]]
    ) -> List[Signal]:
        items = list(pairs_with_data)
        logger.info("Generating signals for %d pairs", len(items))

        async def _one(pair: TradingPair, market_data: MarketData) -> Signal | None:
            try:
                return await self.execute(pair, market_data)
            except Exception as exc:
                logger.error("Error processing pair %s: %s", pair.symbol, exc)
                return None

        results = await asyncio.gather(*(_one(pair, data) for pair, data in items))
        signals = [signal for signal in results if signal is not None]
        logger.info("Generated %d signals from %d pairs", len(signals), len(items))
        await self._events.publish(
            EventType.SIGNAL_BATCH_COMPLETED,
            {
                "total_pairs": len(items),
                "signals_generated": len(signals),
                "signals": [
                    {
                        "id": signal.id,
                        "pair": signal.pair,
                        "direction": signal.direction.value,
                        "confidence": signal.confidence,
                    }
                    for signal in signals
                ],
            },
            source=SOURCE,
        )
        return signals
